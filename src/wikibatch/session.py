"""
Sessions: the public entry point for making API requests.
"""

from __future__ import annotations

import inspect
import typing as t
from contextlib import aclosing

import httpx
import structlog

from wikibatch import retry
from wikibatch.combine import RequestCombiner
from wikibatch.continuation import (
    request_and_continue,
    request_and_continue_reducing_batch,
)
from wikibatch.exceptions import ApiErrors, ApiWarnings, DefaultUserAgentWarning, HttpStatusError
from wikibatch.logging import logging_context
from wikibatch.options import DEFAULT_OPTIONS, METHODS, Options, merge_error_handlers, merge_options
from wikibatch.params import encode_params, split_post_params
from wikibatch.response import (
    make_warn_dropping_truncated_result_warning,
    response_errors,
    response_warnings,
)
from wikibatch.transport import HttpxTransport, InternalResponse, Transport

log = structlog.get_logger(__name__)

VERSION = "1.0.0"
LIBRARY_USER_AGENT = f"wikibatch/{VERSION} (https://pypi.org/project/wikibatch/)"

A = t.TypeVar("A")


class Session:
    """
    A session to make API requests.

    Parameters
    ----------
    api_url : str
        URL of the ``api.php`` endpoint, such as
        ``https://en.wikipedia.org/w/api.php``, or just a domain such as
        ``en.wikipedia.org``.
    default_params : Options | None, optional
        Parameters included in every request; ``formatversion=2`` is
        strongly recommended here.
    default_options : Options | None, optional
        Options for every request; set ``user_agent`` here.
    transport : Transport
        HTTP layer performing the actual requests.
    extra_default_options : typing.Sequence[Options], optional
        Additional default option layers between the built-in defaults and
        ``default_options``, for extension packages with their own options.
    combine : bool, optional
        Whether concurrent compatible requests are merged into one call.
    """

    def __init__(
        self,
        api_url: str,
        default_params: Options | None = None,
        default_options: Options | None = None,
        *,
        transport: Transport,
        extra_default_options: t.Sequence[Options] = (),
        combine: bool = True,
    ) -> None:
        if "/" not in api_url:
            api_url = f"https://{api_url}/w/api.php"
        self.api_url = api_url
        # both may be modified after construction, e.g. to add assert=user after login
        self.default_params: dict[str, t.Any] = dict(default_params or {})
        self.default_options: dict[str, t.Any] = dict(default_options or {})
        # clear after logging in or out
        self.tokens: dict[str, str] = {}
        self.transport = transport
        self._extra_default_options = tuple(extra_default_options)
        self._warned_default_user_agent = False
        self._combiner = RequestCombiner(session=self) if combine else None

    def default_options_view(self) -> dict[str, t.Any]:
        """Built-in, extension and session default options merged together."""
        return merge_options(DEFAULT_OPTIONS, *self._extra_default_options, self.default_options)

    def effective_options(self, options: Options | None = None) -> dict[str, t.Any]:
        return merge_options(self.default_options_view(), options)

    def error_handlers(self, options: Options | None = None) -> dict[str, t.Any]:
        return merge_error_handlers(DEFAULT_OPTIONS, *self._extra_default_options, self.default_options, options)

    async def request(self, params: Options, options: Options | None = None) -> t.Any:
        """
        Make an API request.

        Parameters
        ----------
        params : Options
            Request parameters, added to (and overriding) the default
            parameters.
        options : Options | None, optional
            Request options, overriding the default options.

        Returns
        -------
        typing.Any
            Decoded response body.

        Raises
        ------
        ApiErrors
            If the API returned errors that no error handler resolved.
        HttpStatusError
            If the API returned a non-200 status that was not retried.
        """
        if self._combiner is None:
            return await self.raw_request(params, dict(options or {}))
        return await self._combiner.submit(params, options)

    async def raw_request(self, params: Options, options: dict[str, t.Any]) -> t.Any:
        """Make a single API request, bypassing request combination."""
        effective = self.effective_options(options)
        retry_until = retry.compute_retry_until(effective)
        retry_options = {**options, "retry_until": retry_until}

        token_params: dict[str, t.Any] = {}
        if effective["token_type"] is not None:
            token = await self.get_token(effective["token_type"], retry_options)
            token_params = {effective["token_name"]: token}
        all_params = encode_params({**self.default_params, **token_params, **params, "format": "json"})
        headers = self.get_request_headers(options)

        method = effective["method"]
        with logging_context(api_url=self.api_url, method=method):
            log.debug(event="Sending API request", param_names=sorted(all_params))
            if method == "GET":
                response = await self.transport.get(self.api_url, all_params, headers)
            elif method == "POST":
                url_params, body_params = split_post_params(all_params)
                response = await self.transport.post(self.api_url, url_params, body_params, headers)
            else:
                raise ValueError(f"Unknown request method: {method} (expected one of {', '.join(METHODS)})")
            if not isinstance(response, InternalResponse):
                response = InternalResponse.model_validate(response)

            decision = retry.should_retry(headers=response.headers, retry_until=retry_until)
            if decision.retry:
                log.info(
                    event="Retrying request after Retry-After",
                    status=response.status,
                    retry_after_seconds=decision.delay,
                )
                await retry.sleep(decision.delay)
                return await self.request(params, retry_options)

            if response.status != 200 and "mediawiki-api-error" not in response.headers:
                log.error(event="API request failed", status=response.status)
                raise HttpStatusError(response.status)

            errors = response_errors(response.body)
            handlers = self.error_handlers(options)
            for error in errors:
                handler = handlers.get(error.get("code"))
                if handler is None:
                    continue
                result = handler(self, params, retry_options, response, error)
                if inspect.isawaitable(result):
                    result = await result
                if result is not None:
                    return result
            if errors:
                log.debug(event="API returned errors", codes=[error.get("code") for error in errors])
                raise ApiErrors(errors)

            warnings = response_warnings(response.body)
            if warnings:
                warn = effective["warn"]
                if effective["drop_truncated_result_warning"]:
                    warn = make_warn_dropping_truncated_result_warning(warn)
                warn(ApiWarnings(warnings))

        return response.body

    def request_and_continue(
        self,
        params: Options,
        options: Options | None = None,
    ) -> t.AsyncIterator[t.Any]:
        """
        Make a series of API requests, following API continuation.

        Parameters
        ----------
        params : Options
            Same as for ``request``; continuation parameters are added.
        options : Options | None, optional
            Same as for ``request``.

        Returns
        -------
        typing.AsyncIterator[typing.Any]
            Response bodies, one per request.
        """
        return request_and_continue(self.request, params, options)

    def request_and_continue_reducing_batch(
        self,
        params: Options,
        options: Options | None,
        reducer: t.Callable[[A, t.Any], A],
        initial: t.Callable[[], A] = t.cast(t.Callable[[], A], dict),
    ) -> t.AsyncIterator[A]:
        """
        Follow continuation and yield one reduced value per batch.

        See ``wikibatch.continuation.request_and_continue_reducing_batch``.
        """
        return request_and_continue_reducing_batch(self.request, params, options, reducer, initial)

    async def get_token(self, token_type: str, options: Options | None = None) -> str:
        """
        Get a token of the given type, from the cache or the API.

        Usually not called directly: use the ``token_type`` and
        ``token_name`` request options instead.

        Parameters
        ----------
        token_type : str
            Token type, such as ``"csrf"`` or ``"login"``.
        options : Options | None, optional
            Options for the token request; ``method``, ``token_type`` and
            ``drop_truncated_result_warning`` are overridden.

        Returns
        -------
        str
            The token.
        """
        if token_type not in self.tokens:
            params = {"action": "query", "meta": {"tokens"}, "type": {token_type}}
            token_options = {
                **(options or {}),
                "method": "GET",
                "token_type": None,
                "drop_truncated_result_warning": True,
            }
            async with aclosing(self.request_and_continue(params, token_options)) as responses:
                async for response in responses:
                    tokens = (response.get("query") or {}).get("tokens") or {}
                    token = tokens.get(f"{token_type}token")
                    if isinstance(token, str):
                        self.tokens[token_type] = token
                        break
                    # not in this response, follow continuation
            if token_type not in self.tokens:
                raise LookupError(f"API did not return a {token_type} token")
            log.debug(event="Fetched token", token_type=token_type)
        return self.tokens[token_type]

    def get_request_headers(self, options: Options | None = None) -> dict[str, str]:
        headers = {"user-agent": self.get_user_agent(options)}
        authorization = self.get_authorization_header(options)
        if authorization:
            headers["authorization"] = authorization
        return headers

    def get_user_agent(self, options: Options | None = None) -> str:
        """
        Get the effective user agent for these options.

        Without a ``user_agent`` option, the library user agent is used and
        a ``DefaultUserAgentWarning`` is reported once per session.
        """
        effective = self.effective_options(options)
        user_agent = effective["user_agent"]
        if user_agent:
            return f"{user_agent} {LIBRARY_USER_AGENT}"
        if not self._warned_default_user_agent:
            self._warned_default_user_agent = True
            effective["warn"](DefaultUserAgentWarning())
        return LIBRARY_USER_AGENT

    def get_authorization_header(self, options: Options | None = None) -> str | None:
        effective = self.effective_options(options)
        access_token = effective["access_token"]
        authorization = effective["authorization"]
        if access_token:
            expected = f"Bearer {access_token}"
            if authorization and authorization != expected:
                raise ValueError(
                    f"Inconsistent authorization and access_token options: {authorization} != {expected}"
                )
            return expected
        return authorization or None

    async def aclose(self) -> None:
        close = getattr(self.transport, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> t.Self:
        return self

    async def __aexit__(self, *exc_info: t.Any) -> None:
        await self.aclose()


class HttpxSession(Session):
    """
    Session using an ``httpx.AsyncClient`` for HTTP.

    Parameters
    ----------
    api_url : str
        See ``Session``.
    default_params : Options | None, optional
        See ``Session``.
    default_options : Options | None, optional
        See ``Session``.
    client : httpx.AsyncClient | None, optional
        Client to use, e.g. with custom timeouts or a mock transport.
    **kwargs : typing.Any
        Further ``Session`` keyword arguments.
    """

    def __init__(
        self,
        api_url: str,
        default_params: Options | None = None,
        default_options: Options | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        **kwargs: t.Any,
    ) -> None:
        super().__init__(
            api_url,
            default_params,
            default_options,
            transport=HttpxTransport(client=client),
            **kwargs,
        )
