"""Incremental parser for ``text/event-stream`` bodies."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator

from .errors import ParseError, ResourceExhaustedError

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SseEvent:
    data: str
    event: str | None = None
    id: str | None = None

    def json(self) -> Any:
        try:
            return json.loads(self.data)
        except ValueError as exc:
            raise ParseError(f"Invalid JSON in stream event: {exc}", text=self.data) from exc


class EventSourceParser:
    """Line-oriented SSE parser fed with arbitrary text chunks.

    Events are dispatched on a blank line. Multiple ``data:`` lines are joined
    with ``\\n``; comment lines are skipped and ``[DONE]`` payloads are dropped.
    ``max_buffer_size`` is checked before a chunk is parsed: the text still
    pending from earlier chunks plus the whole incoming chunk must fit, even
    when the chunk consists only of complete lines.
    """

    def __init__(self, *, max_buffer_size: int | None = None) -> None:
        self.max_buffer_size = max_buffer_size
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._data: list[str] = []
        self._has_data = False
        self._event: str | None = None
        self._id: str | None = None

    def feed(self, chunk: str) -> list[SseEvent]:
        if self.max_buffer_size is not None and len(self._buffer) + len(chunk) > self.max_buffer_size:
            raise ResourceExhaustedError(
                f"event stream buffer limit of {self.max_buffer_size} characters exceeded"
            )
        self._buffer += chunk
        events: list[SseEvent] = []
        while True:
            line, rest = self._split_line(self._buffer)
            if line is None:
                break
            self._buffer = rest
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SseEvent]:
        """Dispatch whatever is pending at end of stream."""

        events: list[SseEvent] = []
        if self._buffer:
            event = self._process_line(self._buffer.rstrip("\r"))
            self._buffer = ""
            if event is not None:
                events.append(event)
        event = self._process_line("")
        if event is not None:
            events.append(event)
        return events

    @staticmethod
    def _split_line(buffer: str) -> tuple[str | None, str]:
        for index, char in enumerate(buffer):
            if char == "\n":
                return buffer[:index], buffer[index + 1 :]
            if char == "\r":
                if index + 1 >= len(buffer):
                    # may be the first half of a CRLF split across chunks
                    return None, buffer
                skip = 2 if buffer[index + 1] == "\n" else 1
                return buffer[:index], buffer[index + skip :]
        return None, buffer

    def _process_line(self, line: str) -> SseEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._has_data = True
            self._data.append(value)
        elif field == "id":
            self._id = value
        return None

    def _dispatch(self) -> SseEvent | None:
        if not self._has_data:
            self._event = None
            return None
        data = "\n".join(self._data)
        event = None if data == DONE_SENTINEL else SseEvent(data=data, event=self._event, id=self._id)
        self._data = []
        self._has_data = False
        self._event = None
        return event


async def iter_sse_events(
    chunks: AsyncIterable[str], *, max_buffer_size: int | None = None
) -> AsyncIterator[SseEvent]:
    parser = EventSourceParser(max_buffer_size=max_buffer_size)
    async for chunk in chunks:
        for event in parser.feed(chunk):
            yield event
    for event in parser.flush():
        yield event
