"""
Transport contract between a session and the HTTP layer, and its httpx implementation.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog
from pydantic import BaseModel, Field, field_validator

from wikibatch.params import WireValue, has_binary_value, is_binary_param

log = structlog.get_logger(__name__)


class InternalResponse(BaseModel):
    """
    Full server response as seen by the session.

    Parameters
    ----------
    status : int
        HTTP status code.
    headers : dict[str, str]
        Response headers with lower-case names, without ``set-cookie``.
    body : typing.Any
        JSON-decoded response body.
    """

    status: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    body: t.Any = None

    @field_validator("headers", mode="before")
    @classmethod
    def normalize_header_names(cls, value: t.Any) -> t.Any:
        if isinstance(value, t.Mapping):
            return {
                str(name).lower(): header
                for name, header in value.items()
                if str(name).lower() != "set-cookie"
            }
        return value


class Transport(t.Protocol):
    """
    Minimal HTTP interface a session depends on.

    Header names passed in are lower-case and always include
    ``user-agent``; POST requests may include ``authorization``.
    """

    async def get(
        self,
        url: str,
        params: dict[str, WireValue],
        headers: dict[str, str],
    ) -> InternalResponse: ...

    async def post(
        self,
        url: str,
        url_params: dict[str, WireValue],
        body_params: dict[str, WireValue],
        headers: dict[str, str],
    ) -> InternalResponse: ...


class HttpxTransport:
    """
    Transport backed by an ``httpx.AsyncClient``.

    The client keeps cookies between requests, so a login made through the
    session persists for its lifetime.

    Parameters
    ----------
    client : httpx.AsyncClient | None, optional
        Client to use; a new one is created if omitted.
    timeout : float, optional
        Timeout for a newly created client, in seconds.
    """

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def get(
        self,
        url: str,
        params: dict[str, WireValue],
        headers: dict[str, str],
    ) -> InternalResponse:
        response = await self._client.get(url, params=t.cast(dict[str, str], params), headers=headers)
        return self._to_internal_response(response=response)

    async def post(
        self,
        url: str,
        url_params: dict[str, WireValue],
        body_params: dict[str, WireValue],
        headers: dict[str, str],
    ) -> InternalResponse:
        if has_binary_value(body_params):
            data = {key: value for key, value in body_params.items() if not is_binary_param(value)}
            files = {key: value for key, value in body_params.items() if is_binary_param(value)}
            log.debug(event="Sending multipart POST request", file_params=sorted(files))
            response = await self._client.post(
                url,
                params=t.cast(dict[str, str], url_params),
                data=data,
                files=files,
                headers=headers,
            )
        else:
            response = await self._client.post(
                url,
                params=t.cast(dict[str, str], url_params),
                data=body_params,
                headers=headers,
            )
        return self._to_internal_response(response=response)

    @staticmethod
    def _to_internal_response(*, response: httpx.Response) -> InternalResponse:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return InternalResponse(
            status=response.status_code,
            headers=dict(response.headers.items()),
            body=body,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
