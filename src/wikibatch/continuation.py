"""
Following API continuation across a series of requests.
"""

from __future__ import annotations

import typing as t

import structlog

from wikibatch.response import is_batch_complete, response_continuation

log = structlog.get_logger(__name__)

RequestFunction = t.Callable[[t.Mapping[str, t.Any], t.Mapping[str, t.Any]], t.Awaitable[t.Any]]
A = t.TypeVar("A")


async def request_and_continue(
    request: RequestFunction,
    params: t.Mapping[str, t.Any],
    options: t.Mapping[str, t.Any] | None = None,
) -> t.AsyncIterator[t.Any]:
    """
    Make a series of API requests, following API continuation.

    The next request is only made once the consumer asks for the next
    response; stopping the iteration early stops making requests.

    Parameters
    ----------
    request : RequestFunction
        Function making a single request, usually ``Session.request``.
    params : typing.Mapping[str, typing.Any]
        Request parameters; continuation parameters are added to them,
        overriding parameters of the same name.
    options : typing.Mapping[str, typing.Any] | None, optional
        Request options, the same for every request.

    Yields
    ------
    typing.Any
        Each response body, in order.
    """
    options = options or {}
    # continue= (empty) opts into the modern continuation format
    continue_params: dict[str, t.Any] | None = {"continue": None}
    request_count = 0
    while continue_params is not None:
        response = await request({**params, **continue_params}, options)
        request_count += 1
        continue_params = response_continuation(response)
        log.debug(
            event="Continuation response received",
            request_count=request_count,
            has_continuation=continue_params is not None,
        )
        yield response


async def request_and_continue_reducing_batch(
    request: RequestFunction,
    params: t.Mapping[str, t.Any],
    options: t.Mapping[str, t.Any] | None,
    reducer: t.Callable[[A, t.Any], A],
    initial: t.Callable[[], A] = t.cast(t.Callable[[], A], dict),
) -> t.AsyncIterator[A]:
    """
    Follow continuation, folding the responses of each batch together.

    Works like ``functools.reduce`` repeated once per batch: at the start
    of a batch, ``initial()`` produces the accumulator, ``reducer`` folds
    every response of the batch into it, and at the end of the batch
    (signalled by ``batchcomplete``) the accumulator is yielded.

    Parameters
    ----------
    request : RequestFunction
        Function making a single request, usually ``Session.request``.
    params : typing.Mapping[str, typing.Any]
        Request parameters.
    options : typing.Mapping[str, typing.Any] | None
        Request options. ``drop_truncated_result_warning`` defaults to
        ``True`` here, since continuation retrieves the rest of a
        truncated result anyway.
    reducer : typing.Callable[[A, typing.Any], A]
        Called with the accumulator and a response, returns the new
        accumulator.
    initial : typing.Callable[[], A], optional
        Factory for the accumulator of each batch, ``dict`` by default.

    Yields
    ------
    A
        The accumulator at the end of each batch.
    """
    options = {"drop_truncated_result_warning": True, **(options or {})}
    accumulator = initial()
    async for response in request_and_continue(request, params, options):
        # read before the reducer gets a chance to modify the response
        complete = is_batch_complete(response)
        accumulator = reducer(accumulator, response)
        if complete:
            yield accumulator
            accumulator = initial()
