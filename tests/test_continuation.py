"""
Tests for API continuation in wikibatch.continuation.
"""

import pytest

from tests.mocks.sessions import CallbackTransport, ExpectedCall, FakeTransport, make_session
from wikibatch.exceptions import ApiErrors

TRUNCATED_TEXT = "This result was truncated because it would otherwise be larger than the limit of 12,582,912 bytes"


def merge_pages(accumulator: dict, response: dict) -> dict:
    for page in response.get("query", {}).get("pages", []):
        accumulator.setdefault(page["title"], {}).update(page)
    return accumulator


@pytest.mark.asyncio
async def test_query_continuation():
    """Test that continuation parameters of each response are sent with the next request."""
    params = {"action": "query", "generator": "allpages", "gaplimit": 1}
    response_1 = {"continue": {"gapcontinue": "!!", "continue": "gapcontinue||"}}
    response_2 = {"batchcomplete": True}
    transport = FakeTransport(
        calls=[
            ExpectedCall(params={"action": "query", "generator": "allpages", "gaplimit": "1"}, response=response_1),
            ExpectedCall(
                params={
                    "action": "query",
                    "generator": "allpages",
                    "gaplimit": "1",
                    "gapcontinue": "!!",
                    "continue": "gapcontinue||",
                },
                response=response_2,
            ),
        ]
    )
    session = make_session(transport=transport)

    responses = [response async for response in session.request_and_continue(params)]

    assert responses == [response_1, response_2]
    assert transport.remaining == 0


@pytest.mark.asyncio
async def test_post_continuation():
    """Test that continuation works for POST requests, with parameters in the body."""
    response_1 = {"continue": {"gapcontinue": "B", "continue": "gapcontinue||"}, "purge": [{"title": "A"}]}
    response_2 = {"batchcomplete": True, "purge": [{"title": "B"}]}
    transport = FakeTransport(
        calls=[
            ExpectedCall(params={"generator": "allpages", "gaplimit": "1"}, response=response_1, method="POST"),
            ExpectedCall(
                params={
                    "generator": "allpages",
                    "gaplimit": "1",
                    "gapcontinue": "B",
                    "continue": "gapcontinue||",
                },
                response=response_2,
                method="POST",
            ),
        ]
    )
    session = make_session(transport=transport)

    responses = [
        response
        async for response in session.request_and_continue(
            {"action": "purge", "generator": "allpages", "gaplimit": 1},
            {"method": "POST"},
        )
    ]

    assert responses == [response_1, response_2]
    assert [call.url_params for call in transport.calls] == [{"action": "purge"}, {"action": "purge"}]


@pytest.mark.asyncio
async def test_continuation_yields_every_response():
    """Test that a series of N continued responses yields N responses."""
    page_count = 5

    def handle(params):
        index = int(params.get("gapcontinue", "0"))
        response = {"query": {"pages": [{"title": f"Page {index}"}]}}
        if index + 1 < page_count:
            response["continue"] = {"gapcontinue": str(index + 1), "continue": "gapcontinue||"}
        else:
            response["batchcomplete"] = True
        return response

    transport = CallbackTransport(handler=handle)
    session = make_session(transport=transport)

    responses = [
        response async for response in session.request_and_continue({"action": "query", "generator": "allpages"})
    ]

    assert [response["query"]["pages"][0]["title"] for response in responses] == [
        f"Page {index}" for index in range(page_count)
    ]
    assert len(transport.calls) == page_count


@pytest.mark.asyncio
async def test_stopping_early_makes_no_more_requests():
    """Test that requests are only made as responses are consumed."""
    transport = CallbackTransport(handler=lambda params: {"continue": {"offset": "1", "continue": "-||"}})
    session = make_session(transport=transport)

    async for _ in session.request_and_continue({"action": "query", "list": "search"}):
        break

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_modifying_response_does_not_affect_continuation():
    """Test that the consumer may modify the response, including its continuation."""
    transport = FakeTransport(
        calls=[
            ExpectedCall(params={"action": "query"}, response={"continue": {"offset": "10", "continue": "-||"}}),
            ExpectedCall(params={"action": "query", "offset": "10", "continue": "-||"}, response={}),
        ]
    )
    session = make_session(transport=transport)

    async for response in session.request_and_continue({"action": "query"}):
        if "continue" in response:
            response["continue"]["offset"] = "999"
            del response["continue"]

    assert transport.remaining == 0


@pytest.mark.asyncio
async def test_error_ends_continuation():
    """Test that an error in a continued request is raised from the iteration."""
    transport = FakeTransport(
        calls=[
            ExpectedCall(params={"action": "query"}, response={"continue": {"offset": "10", "continue": "-||"}}),
            ExpectedCall(
                params={"action": "query", "offset": "10", "continue": "-||"},
                response={"error": {"code": "internal_api_error"}},
            ),
        ]
    )
    session = make_session(transport=transport)
    responses = []

    with pytest.raises(ApiErrors):
        async for response in session.request_and_continue({"action": "query"}):
            responses.append(response)

    assert len(responses) == 1


@pytest.mark.asyncio
async def test_reducing_batch_yields_per_batch():
    """Test that responses are reduced per batch and yielded at batchcomplete."""
    responses = [
        {
            "continue": {"rvcontinue": "1", "continue": "||"},
            "query": {"pages": [{"title": "A", "revisions": [1]}, {"title": "B"}]},
        },
        {
            "continue": {"gapcontinue": "C", "continue": "gapcontinue||"},
            "batchcomplete": True,
            "query": {"pages": [{"title": "B", "revisions": [2]}]},
        },
        {"batchcomplete": True, "query": {"pages": [{"title": "C", "revisions": [3]}]}},
    ]
    transport = CallbackTransport(handler=lambda params: responses[len(transport.calls) - 1])
    session = make_session(transport=transport)

    batches = [
        batch
        async for batch in session.request_and_continue_reducing_batch(
            {"action": "query", "generator": "allpages", "prop": "revisions"},
            None,
            merge_pages,
        )
    ]

    assert batches == [
        {"A": {"title": "A", "revisions": [1]}, "B": {"title": "B", "revisions": [2]}},
        {"C": {"title": "C", "revisions": [3]}},
    ]


@pytest.mark.asyncio
async def test_reducing_batch_reads_batchcomplete_before_reducer():
    """Test that a reducer removing batchcomplete does not prevent the yield."""

    def destructive_reducer(accumulator, response):
        response.pop("batchcomplete", None)
        return accumulator + 1

    transport = CallbackTransport(handler=lambda params: {"batchcomplete": ""})
    session = make_session(transport=transport)

    batches = [
        batch
        async for batch in session.request_and_continue_reducing_batch(
            {"action": "query"}, None, destructive_reducer, lambda: 0
        )
    ]

    assert batches == [1]


@pytest.mark.asyncio
async def test_reducing_batch_with_text_body():
    """Test that a successful response that is not JSON is reduced without completing a batch."""
    transport = CallbackTransport(handler=lambda params: "<html>maintenance</html>")
    session = make_session(transport=transport)
    seen = []

    def reducer(accumulator, response):
        seen.append(response)
        return accumulator

    batches = [
        batch async for batch in session.request_and_continue_reducing_batch({"action": "query"}, None, reducer)
    ]

    assert batches == []
    assert seen == ["<html>maintenance</html>"]
    assert len(transport.calls) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "warnings",
    [
        {"main": {"*": TRUNCATED_TEXT}},
        {"main": {"*": TRUNCATED_TEXT.replace("otherwise be", "otherwise  be")}},
        {"main": {"warnings": TRUNCATED_TEXT + "."}},
        [{"code": "truncatedresult", "module": "main", "text": TRUNCATED_TEXT}],
    ],
)
async def test_reducing_batch_drops_truncated_result_warning(warnings):
    """Test that the truncated result warning is dropped in every format."""
    transport = CallbackTransport(handler=lambda params: {"batchcomplete": True, "warnings": warnings})
    session = make_session(transport=transport)

    batches = [
        batch
        async for batch in session.request_and_continue_reducing_batch(
            {"action": "query"}, None, lambda accumulator, response: accumulator
        )
    ]

    assert batches == [{}]


@pytest.mark.asyncio
async def test_reducing_batch_reports_other_warnings():
    """Test that other warnings still reach the warn handler, without truncation warnings."""
    warnings = [
        {"code": "truncatedresult", "module": "main", "text": TRUNCATED_TEXT},
        {"code": "deprecation", "module": "query+revisions", "text": "…"},
        {"code": "truncatedresult", "module": "main", "text": TRUNCATED_TEXT},
    ]
    transport = CallbackTransport(handler=lambda params: {"batchcomplete": True, "warnings": warnings})
    session = make_session(transport=transport)
    seen = []

    async for _ in session.request_and_continue_reducing_batch(
        {"action": "query"}, {"warn": seen.append}, lambda accumulator, response: accumulator
    ):
        pass

    assert len(seen) == 1
    assert seen[0].warnings == [{"code": "deprecation", "module": "query+revisions", "text": "…"}]


@pytest.mark.asyncio
async def test_reducing_batch_can_keep_truncated_result_warning():
    """Test that dropping truncation warnings can be turned off."""
    warnings = [{"code": "truncatedresult", "module": "main", "text": TRUNCATED_TEXT}]
    transport = CallbackTransport(handler=lambda params: {"batchcomplete": True, "warnings": warnings})
    session = make_session(transport=transport)
    seen = []

    async for _ in session.request_and_continue_reducing_batch(
        {"action": "query"},
        {"warn": seen.append, "drop_truncated_result_warning": False},
        lambda accumulator, response: accumulator,
    ):
        pass

    assert [warning.warnings for warning in seen] == [warnings]
