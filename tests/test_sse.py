from __future__ import annotations

import pytest

from modelbridge.errors import ParseError, ResourceExhaustedError
from modelbridge.sse import EventSourceParser, iter_sse_events


def test_basic_events_and_done_sentinel() -> None:
    parser = EventSourceParser()
    events = parser.feed('data: {"a": 1}\n\ndata: [DONE]\n\n')
    assert [event.data for event in events] == ['{"a": 1}']
    assert events[0].json() == {"a": 1}


def test_chunk_boundaries_and_line_endings() -> None:
    parser = EventSourceParser()
    events = []
    for chunk in ["event: delta\r", "\ndata: hel", "lo\r\n\r", "\n", "data: x\r\rdata: y\n\n"]:
        events.extend(parser.feed(chunk))
    assert [(event.event, event.data) for event in events] == [
        ("delta", "hello"),
        (None, "x"),
        (None, "y"),
    ]


def test_comments_multiline_data_and_ids() -> None:
    parser = EventSourceParser()
    events = parser.feed(": keep-alive\nid: 7\ndata: line one\ndata: line two\n\n")
    assert len(events) == 1
    assert events[0].data == "line one\nline two"
    assert events[0].id == "7"


def test_blank_line_without_data_dispatches_nothing() -> None:
    parser = EventSourceParser()
    assert parser.feed("event: ping\n\n") == []
    assert parser.feed("data: after\n\n")[0].event is None


def test_flush_emits_pending_event() -> None:
    parser = EventSourceParser()
    assert parser.feed("data: tail") == []
    assert [event.data for event in parser.flush()] == ["tail"]


def test_buffer_limit() -> None:
    parser = EventSourceParser(max_buffer_size=8)
    with pytest.raises(ResourceExhaustedError):
        parser.feed("data: this is far too long")


def test_buffer_limit_counts_whole_chunk_even_when_terminated() -> None:
    parser = EventSourceParser(max_buffer_size=64)
    assert [event.data for event in parser.feed("data: a\n\n")] == ["a"]
    with pytest.raises(ResourceExhaustedError):
        parser.feed("data: x\n\n" * 20)


def test_invalid_json_payload() -> None:
    event = EventSourceParser().feed("data: {oops\n\n")[0]
    with pytest.raises(ParseError):
        event.json()


@pytest.mark.anyio
async def test_iter_sse_events_over_async_chunks() -> None:
    async def chunks():
        for piece in ["data: 1\n", "\ndata: 2\n\n", "data: 3"]:
            yield piece

    data = [event.data async for event in iter_sse_events(chunks())]
    assert data == ["1", "2", "3"]
