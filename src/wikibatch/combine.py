"""
Combining of concurrent compatible requests into a single API call.

Requests issued within the same event loop tick are collected in a pending
list. A new request is merged into the first pending request whose
parameters and options are compatible with it; otherwise it becomes a
pending request itself and is dispatched after yielding one tick, giving
its siblings a chance to join. Every caller merged into a request shares
its result, or its exception.
"""

from __future__ import annotations

import asyncio
import typing as t
from dataclasses import dataclass, field

import structlog

from wikibatch.params import (
    OMIT,
    encode_single,
    encode_value,
    is_list_param,
    is_set_param,
    normalize_scalar,
)

log = structlog.get_logger(__name__)

# Parameters selecting pages through a generator or continuation...
GENERATOR_PARAMS = frozenset({"generator", "continue"})
# ...must not be mixed with parameters selecting pages explicitly.
PAGE_SELECTION_PARAMS = frozenset({"titles", "pageids", "revids"})
# Options with their own combination rules.
TOKEN_OPTIONS = ("token_type", "token_name")

_MISSING: t.Any = object()
_INCOMPATIBLE: t.Any = object()


class CombinableSession(t.Protocol):
    """Operations a session must offer to have its requests combined."""

    def default_options_view(self) -> t.Mapping[str, t.Any]: ...

    async def raw_request(self, params: t.Mapping[str, t.Any], options: dict[str, t.Any]) -> t.Any: ...

    async def get_token(self, token_type: str, options: t.Mapping[str, t.Any] | None = None) -> str: ...


@dataclass
class _PendingRequest:
    """A request waiting for the end of the current tick."""

    params: dict[str, t.Any]
    options: dict[str, t.Any]
    future: asyncio.Future[t.Any] | None = None
    merged_count: int = 1


@dataclass
class _ChainedWarn:
    """Warn handler calling the handlers of every merged request in order."""

    handlers: list[t.Callable[[Exception], t.Any]] = field(default_factory=list)

    def __call__(self, warning: Exception) -> None:
        # every handler runs, the first failure is raised afterwards
        first_error: Exception | None = None
        for handler in self.handlers:
            try:
                handler(warning)
            except Exception as error:
                if first_error is None:
                    first_error = error
        if first_error is not None:
            raise first_error


def _chain_warn(
    warn_a: t.Callable[[Exception], t.Any],
    warn_b: t.Callable[[Exception], t.Any],
) -> _ChainedWarn:
    handlers: list[t.Callable[[Exception], t.Any]] = []
    for warn in (warn_a, warn_b):
        if isinstance(warn, _ChainedWarn):
            handlers.extend(warn.handlers)
        else:
            handlers.append(warn)
    unique: list[t.Callable[[Exception], t.Any]] = []
    for handler in handlers:
        if not any(handler is seen for seen in unique):
            unique.append(handler)
    return _ChainedWarn(handlers=unique)


def _specifies(params: t.Mapping[str, t.Any], names: frozenset[str]) -> bool:
    return any(name in params and encode_value(params[name]) is not OMIT for name in names)


def _combine_values(value_a: t.Any, value_b: t.Any) -> t.Any:
    """
    Combine two values of the same parameter.

    Returns
    -------
    typing.Any
        The combined value, or ``_INCOMPATIBLE``.
    """
    normalized_a = normalize_scalar(value_a)
    normalized_b = normalize_scalar(value_b)
    if is_set_param(normalized_a) and is_set_param(normalized_b):
        return {encode_single(element) for element in normalized_a} | {
            encode_single(element) for element in normalized_b
        }
    if is_set_param(normalized_a) or is_set_param(normalized_b):
        return _INCOMPATIBLE
    if is_list_param(normalized_a) and is_list_param(normalized_b):
        if [encode_single(element) for element in normalized_a] == [
            encode_single(element) for element in normalized_b
        ]:
            return value_a
        return _INCOMPATIBLE
    if is_list_param(normalized_a) or is_list_param(normalized_b):
        return _INCOMPATIBLE
    if normalized_a == normalized_b:
        return value_a
    return _INCOMPATIBLE


class RequestCombiner:
    """
    Merge requests issued in the same tick into shared API calls.

    Parameters
    ----------
    session : CombinableSession
        Session whose ``raw_request`` performs the actual (uncombined)
        requests.

    Notes
    -----
    The pending list is only read and modified in synchronous sections
    between suspension points, so no lock is needed on a single event loop.
    When several pending requests are compatible with a new one, the
    earliest registered request wins.
    """

    def __init__(self, *, session: CombinableSession) -> None:
        self._session = session
        self._pending: list[_PendingRequest] = []
        self._dispatch_tasks: set[asyncio.Task[None]] = set()

    async def submit(
        self,
        params: t.Mapping[str, t.Any],
        options: t.Mapping[str, t.Any] | None = None,
    ) -> t.Any:
        """
        Submit a request, combining it with a pending one if possible.

        Parameters
        ----------
        params : typing.Mapping[str, typing.Any]
            Request parameters.
        options : typing.Mapping[str, typing.Any] | None, optional
            Request options.

        Returns
        -------
        typing.Any
            Response body shared by all requests merged into the same call.
        """
        options = dict(options or {})
        defaults = self._session.default_options_view()

        token_type = options.get("token_type", defaults.get("token_type"))
        if token_type is not None:
            # routed through submit as well, so token requests combine too
            await self._session.get_token(token_type, options)

        candidate = _PendingRequest(params=dict(params), options=options)
        for pending in self._pending:
            if self.combine(pending, candidate) is not None:
                log.debug(
                    event="Combined request with pending request",
                    merged_count=pending.merged_count,
                    param_names=sorted(pending.params),
                )
                return await asyncio.shield(t.cast(asyncio.Future[t.Any], pending.future))

        candidate.future = asyncio.get_running_loop().create_future()
        self._pending.append(candidate)
        task = asyncio.create_task(self._dispatch(pending=candidate), name="wikibatch_dispatch")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        return await asyncio.shield(candidate.future)

    async def _dispatch(self, *, pending: _PendingRequest) -> None:
        future = t.cast(asyncio.Future[t.Any], pending.future)
        try:
            # one tick for requests issued in the same turn to join this one
            await asyncio.sleep(0)
            self._pending.remove(pending)
            log.debug(
                event="Dispatching request",
                merged_count=pending.merged_count,
                param_names=sorted(pending.params),
                pending_count=len(self._pending),
            )
            result = await self._session.raw_request(pending.params, pending.options)
        except asyncio.CancelledError:
            if pending in self._pending:
                self._pending.remove(pending)
            future.cancel()
            raise
        except Exception as error:
            log.debug(
                event="Combined request failed",
                merged_count=pending.merged_count,
                error=str(error),
            )
            if not future.done():
                future.set_exception(error)
        else:
            if not future.done():
                future.set_result(result)

    def combine(self, request_a: _PendingRequest, request_b: _PendingRequest) -> _PendingRequest | None:
        """
        Try to merge a new request into an existing one.

        Parameters
        ----------
        request_a : _PendingRequest
            The existing request; modified in place if compatible.
        request_b : _PendingRequest
            The new request; not modified.

        Returns
        -------
        _PendingRequest | None
            ``request_a`` if the requests were merged, else ``None``.
        """
        params = self.combine_params(request_a.params, request_b.params)
        if params is None:
            return None
        options = self.combine_options(request_a.options, request_b.options)
        if options is None:
            return None
        request_a.params = params
        request_a.options = options
        request_a.merged_count += request_b.merged_count
        return request_a

    def combine_params(
        self,
        params_a: t.Mapping[str, t.Any],
        params_b: t.Mapping[str, t.Any],
    ) -> dict[str, t.Any] | None:
        """
        Combine two parameter mappings.

        Equal values (after scalar encoding) are kept, sets are unioned;
        lists must be equal and of the same kind. A generator or
        continuation never combines with explicit titles, page IDs or
        revision IDs.

        Parameters
        ----------
        params_a : typing.Mapping[str, typing.Any]
            First parameters; not modified.
        params_b : typing.Mapping[str, typing.Any]
            Second parameters; not modified.

        Returns
        -------
        dict[str, typing.Any] | None
            New combined parameters, or ``None`` if incompatible.
        """
        if (_specifies(params_a, GENERATOR_PARAMS) and _specifies(params_b, PAGE_SELECTION_PARAMS)) or (
            _specifies(params_b, GENERATOR_PARAMS) and _specifies(params_a, PAGE_SELECTION_PARAMS)
        ):
            return None

        params: dict[str, t.Any] = {}
        for key, value_b in params_b.items():
            if key not in params_a:
                params[key] = value_b
                continue
            value = _combine_values(params_a[key], value_b)
            if value is _INCOMPATIBLE:
                return None
            params[key] = value
        for key, value_a in params_a.items():
            if key not in params_b:
                params[key] = value_a
        return params

    def combine_options(
        self,
        options_a: t.Mapping[str, t.Any],
        options_b: t.Mapping[str, t.Any],
    ) -> dict[str, t.Any] | None:
        """
        Combine two option mappings.

        An option is compatible if both sides have the same effective value
        (an absent option has the session's default value). Warn handlers
        never prevent combination: both are called. Token names only matter
        when a token type is requested.

        Parameters
        ----------
        options_a : typing.Mapping[str, typing.Any]
            First options; not modified.
        options_b : typing.Mapping[str, typing.Any]
            Second options; not modified.

        Returns
        -------
        dict[str, typing.Any] | None
            New combined options, or ``None`` if incompatible.
        """
        defaults = self._session.default_options_view()
        options: dict[str, t.Any] = {}

        for key in {**options_a, **options_b}:
            if key == "warn" or key in TOKEN_OPTIONS:
                continue
            value_a = options_a.get(key, _MISSING)
            value_b = options_b.get(key, _MISSING)
            default = defaults.get(key)
            effective_a = default if value_a is _MISSING else value_a
            effective_b = default if value_b is _MISSING else value_b
            if effective_a != effective_b:
                return None
            options[key] = value_a if value_a is not _MISSING else value_b

        token_type_a = options_a.get("token_type", defaults.get("token_type"))
        token_type_b = options_b.get("token_type", defaults.get("token_type"))
        if token_type_a != token_type_b:
            return None
        if token_type_a is not None:
            token_name_a = options_a.get("token_name", defaults.get("token_name"))
            token_name_b = options_b.get("token_name", defaults.get("token_name"))
            if token_name_a != token_name_b:
                return None
        for key in TOKEN_OPTIONS:
            if key in options_a:
                options[key] = options_a[key]
            elif key in options_b:
                options[key] = options_b[key]

        if "warn" in options_a or "warn" in options_b:
            warn_a = options_a.get("warn", defaults.get("warn"))
            warn_b = options_b.get("warn", defaults.get("warn"))
            options["warn"] = _chain_warn(warn_a, warn_b)

        return options
