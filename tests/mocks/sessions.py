"""
Fake transports and sessions for unit tests.
"""

import typing as t
from dataclasses import dataclass, field

from wikibatch.session import Session
from wikibatch.transport import InternalResponse


def successful_response(body: t.Any) -> InternalResponse:
    return InternalResponse(status=200, headers={}, body=body)


def make_response(body_or_response: t.Any) -> InternalResponse:
    """
    Build a transport response.

    Parameters
    ----------
    body_or_response : typing.Any
        Either a ready ``InternalResponse`` or just a body for a
        successful response.

    Returns
    -------
    InternalResponse
        Response to return from the fake transport.
    """
    if isinstance(body_or_response, InternalResponse):
        return body_or_response
    return successful_response(body_or_response)


@dataclass
class ExpectedCall:
    """
    One request the fake transport expects.

    ``format=json`` is added to ``params`` automatically.
    """

    params: dict[str, t.Any] = field(default_factory=dict)
    response: t.Any = field(default_factory=dict)
    method: str = "GET"


@dataclass
class RecordedCall:
    method: str
    url: str
    url_params: dict[str, t.Any]
    params: dict[str, t.Any]
    headers: dict[str, str]


class FakeTransport:
    """
    Transport answering a fixed sequence of expected calls, in order.
    """

    def __init__(self, *, calls: list[ExpectedCall]) -> None:
        self._expected = list(calls)
        self.calls: list[RecordedCall] = []

    def _next(self, *, recorded: RecordedCall) -> InternalResponse:
        self.calls.append(recorded)
        assert self._expected, f"unexpected {recorded.method} call #{len(self.calls)}: {recorded.params}"
        expected = self._expected.pop(0)
        assert recorded.method == expected.method, f"{expected.method} request expected"
        assert recorded.params == {**expected.params, "format": "json"}
        return make_response(expected.response)

    async def get(self, url: str, params: dict[str, t.Any], headers: dict[str, str]) -> InternalResponse:
        return self._next(
            recorded=RecordedCall(method="GET", url=url, url_params={}, params=params, headers=headers)
        )

    async def post(
        self,
        url: str,
        url_params: dict[str, t.Any],
        body_params: dict[str, t.Any],
        headers: dict[str, str],
    ) -> InternalResponse:
        return self._next(
            recorded=RecordedCall(
                method="POST", url=url, url_params=url_params, params=body_params, headers=headers
            )
        )

    @property
    def remaining(self) -> int:
        return len(self._expected)


class CallbackTransport:
    """
    Transport delegating every GET to a callback, for tests that compute responses.
    """

    def __init__(self, *, handler: t.Callable[[dict[str, t.Any]], t.Any]) -> None:
        self._handler = handler
        self.calls: list[dict[str, t.Any]] = []

    async def get(self, url: str, params: dict[str, t.Any], headers: dict[str, str]) -> InternalResponse:
        self.calls.append(params)
        return make_response(self._handler(params))

    async def post(
        self,
        url: str,
        url_params: dict[str, t.Any],
        body_params: dict[str, t.Any],
        headers: dict[str, str],
    ) -> InternalResponse:
        raise AssertionError("post() should not be called in this test")


def no_warn(warning: Exception) -> None:
    raise AssertionError(f"warn() should not be called in this test: {warning!r}")


def make_session(
    *,
    transport: t.Any,
    default_params: dict[str, t.Any] | None = None,
    default_options: dict[str, t.Any] | None = None,
    **kwargs: t.Any,
) -> Session:
    """
    Create a session for unit tests.

    Unless given, ``warn`` fails the test and ``user_agent`` is set.
    """
    options = dict(default_options or {})
    options.setdefault("warn", no_warn)
    options.setdefault("user_agent", "wikibatch-unit-test")
    return Session("en.wikipedia.org", default_params, options, transport=transport, **kwargs)


class FakeClock:
    """
    Replacement for ``wikibatch.retry.monotonic`` and ``wikibatch.retry.sleep``.

    Sleeping advances the clock instantly.
    """

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
