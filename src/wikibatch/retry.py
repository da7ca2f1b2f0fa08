"""
Retry decisions for transient API failures.

Two mechanisms cooperate here: a ``Retry-After`` response header is
honored directly by the session, and per-error-code handlers (registered
through the ``error_handlers`` option) may re-issue a request after an
API error. Both are bounded by the ``retry_until`` deadline, derived from
the ``max_retries_seconds`` option on the first attempt.
"""

from __future__ import annotations

import asyncio
import time
import typing as t
from dataclasses import dataclass
from types import MappingProxyType

import structlog

if t.TYPE_CHECKING:
    from wikibatch.session import Session
    from wikibatch.transport import InternalResponse

log = structlog.get_logger(__name__)

ErrorHandler = t.Callable[
    ["Session", t.Mapping[str, t.Any], dict[str, t.Any], "InternalResponse", dict[str, t.Any]],
    t.Any,
]


def monotonic() -> float:
    return time.monotonic()


async def sleep(delay: float) -> None:
    await asyncio.sleep(delay)


@dataclass(frozen=True)
class RetryDecision:
    """
    Outcome of inspecting a response for a ``Retry-After`` header.

    Parameters
    ----------
    retry : bool
        Whether the request should be repeated.
    delay : float
        Seconds to wait before repeating it.
    """

    retry: bool
    delay: float


def retry_after_seconds(headers: t.Mapping[str, str]) -> float | None:
    """
    Parse the ``Retry-After`` header.

    Parameters
    ----------
    headers : typing.Mapping[str, str]
        Lower-cased response headers.

    Returns
    -------
    float | None
        Delay in seconds, or ``None`` if the header is absent or not a number.
    """
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        log.debug(event="Ignoring unparseable Retry-After header", retry_after=value)
        return None


def compute_retry_until(options: t.Mapping[str, t.Any], now: float | None = None) -> float:
    """Deadline for retries: the ``retry_until`` option, else now plus ``max_retries_seconds``."""
    retry_until = options.get("retry_until")
    if retry_until is not None:
        return float(retry_until)
    if now is None:
        now = monotonic()
    return now + float(options["max_retries_seconds"])


def should_retry(
    *,
    headers: t.Mapping[str, str],
    retry_until: float,
    now: float | None = None,
) -> RetryDecision:
    """
    Decide whether a response with a ``Retry-After`` header is retried.

    Parameters
    ----------
    headers : typing.Mapping[str, str]
        Lower-cased response headers.
    retry_until : float
        Monotonic deadline after which no retry may start.
    now : float | None, optional
        Current monotonic time, defaults to ``monotonic()``.

    Returns
    -------
    RetryDecision
        ``retry`` is true only if the delay still fits before the deadline.
    """
    delay = retry_after_seconds(headers)
    if delay is None:
        return RetryDecision(retry=False, delay=0.0)
    if now is None:
        now = monotonic()
    return RetryDecision(retry=now + delay <= retry_until, delay=delay)


async def retry_if_before(
    session: Session,
    params: t.Mapping[str, t.Any],
    options: dict[str, t.Any],
    retry_after_seconds: float,
) -> t.Any | None:
    """
    Repeat a request after a delay, if the retry deadline allows it.

    Parameters
    ----------
    session : Session
        Session to repeat the request on.
    params : typing.Mapping[str, typing.Any]
        Original request parameters.
    options : dict[str, typing.Any]
        Request options; must contain ``retry_until``.
    retry_after_seconds : float
        Delay before the retry.

    Returns
    -------
    typing.Any | None
        Response body of the repeated request, or ``None`` if the delay
        would exceed the deadline.
    """
    now = monotonic()
    if now + retry_after_seconds > options["retry_until"]:
        log.debug(
            event="Retry budget exhausted",
            retry_after_seconds=retry_after_seconds,
            remaining_seconds=options["retry_until"] - now,
        )
        return None
    log.info(event="Retrying request", retry_after_seconds=retry_after_seconds)
    await sleep(retry_after_seconds)
    return await session.request(params, options)


def _make_transient_error_handler(delay_option: str) -> ErrorHandler:
    async def handle_transient_error(
        session: Session,
        params: t.Mapping[str, t.Any],
        options: dict[str, t.Any],
        response: InternalResponse,
        error: dict[str, t.Any],
    ) -> t.Any | None:
        # the Retry-After header already took precedence over the option
        if "retry-after" in response.headers:
            return None
        delay = session.effective_options(options)[delay_option]
        return await retry_if_before(session, params, options, delay)

    return handle_transient_error


async def handle_badtoken(
    session: Session,
    params: t.Mapping[str, t.Any],
    options: dict[str, t.Any],
    response: InternalResponse,
    error: dict[str, t.Any],
) -> t.Any | None:
    if session.effective_options(options)["token_type"] is None:
        # token was supplied manually, nothing to refresh
        return None
    log.info(event="Clearing cached tokens after badtoken error")
    session.tokens.clear()
    return await retry_if_before(session, params, options, 0)


DEFAULT_ERROR_HANDLERS: t.Mapping[str, ErrorHandler] = MappingProxyType(
    {
        "maxlag": _make_transient_error_handler("retry_after_maxlag_seconds"),
        "readonly": _make_transient_error_handler("retry_after_readonly_seconds"),
        "badtoken": handle_badtoken,
    }
)
