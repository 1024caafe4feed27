"""Ordered stream event delivery and online response reconstruction.

A stream is a sequence of events delivered synchronously to one sink:
``start``, any number of content events, then exactly one terminal, either
``error`` or ``finish_reason`` followed by ``complete``. The
:class:`StreamPipeline` enforces that order for bindings; the
:class:`StreamAccumulator` rebuilds the full response from the events in a
single pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from .context import RequestContext
from .diagnostics import ErrorDiagnostic, classify_exception
from .errors import CancelledError
from .logging_utils import get_logger
from .results import (
    CallWarning,
    Failure,
    FinishReason,
    GenerateResult,
    Success,
    TextOutput,
    ToolCall,
    Usage,
)

_LOG = get_logger("streaming")


class EventType(str, Enum):
    START = "start"
    TEXT_DELTA = "text_delta"
    TOOL_CALL_START = "tool_call_start"
    TOOL_INPUT_DELTA = "tool_input_delta"
    TOOL_CALL_COMPLETE = "tool_call_complete"
    USAGE = "usage"
    FINISH_REASON = "finish_reason"
    ERROR = "error"
    COMPLETE = "complete"


_TOOL_EVENTS = frozenset(
    {EventType.TOOL_CALL_START, EventType.TOOL_INPUT_DELTA, EventType.TOOL_CALL_COMPLETE}
)
_CONTENT_EVENTS = _TOOL_EVENTS | {EventType.TEXT_DELTA, EventType.USAGE}


@dataclass(frozen=True)
class StreamEvent:
    type: EventType
    text: str | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    input: str | None = None
    usage: Usage | None = None
    finish_reason: FinishReason | None = None
    error: BaseException | None = None
    diagnostic: ErrorDiagnostic | None = None
    warnings: tuple[CallWarning, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.ERROR, EventType.COMPLETE)

    @classmethod
    def start(cls, warnings: Iterable[CallWarning] = (), **metadata: Any) -> "StreamEvent":
        return cls(EventType.START, warnings=tuple(warnings), metadata=metadata)

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(EventType.TEXT_DELTA, text=text)

    @classmethod
    def tool_call_start(cls, tool_call_id: str, tool_name: str) -> "StreamEvent":
        return cls(EventType.TOOL_CALL_START, tool_call_id=tool_call_id, tool_name=tool_name)

    @classmethod
    def tool_input_delta(cls, tool_call_id: str, delta: str) -> "StreamEvent":
        return cls(EventType.TOOL_INPUT_DELTA, tool_call_id=tool_call_id, text=delta)

    @classmethod
    def tool_call_complete(cls, tool_call_id: str, input: str | None = None) -> "StreamEvent":
        return cls(EventType.TOOL_CALL_COMPLETE, tool_call_id=tool_call_id, input=input)

    @classmethod
    def usage_event(cls, usage: Usage) -> "StreamEvent":
        return cls(EventType.USAGE, usage=usage)

    @classmethod
    def finish(cls, reason: FinishReason) -> "StreamEvent":
        return cls(EventType.FINISH_REASON, finish_reason=reason)

    @classmethod
    def failed(cls, error: BaseException, diagnostic: ErrorDiagnostic | None = None) -> "StreamEvent":
        return cls(EventType.ERROR, error=error, diagnostic=diagnostic)

    @classmethod
    def complete(cls) -> "StreamEvent":
        return cls(EventType.COMPLETE)


StreamSink = Callable[[StreamEvent], None]


@dataclass
class ToolCallRecord:
    tool_call_id: str
    tool_name: str
    _parts: list[str] = field(default_factory=list, repr=False)
    completed: bool = False

    @property
    def input(self) -> str:
        return "".join(self._parts)

    def to_tool_call(self) -> ToolCall:
        return ToolCall(tool_call_id=self.tool_call_id, tool_name=self.tool_name, input=self.input)


class StreamAccumulator:
    """Append-only reconstruction of a streamed response."""

    def __init__(self) -> None:
        self._text: list[str] = []
        self._tool_calls: dict[str, ToolCallRecord] = {}
        self.usage: Usage | None = None
        self.finish_reason: FinishReason | None = None
        self.error: BaseException | None = None
        self.diagnostic: ErrorDiagnostic | None = None
        self.warnings: tuple[CallWarning, ...] = ()
        self.started = False
        self.completed = False

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def tool_calls(self) -> list[ToolCallRecord]:
        return list(self._tool_calls.values())

    def tool_call(self, tool_call_id: str) -> ToolCallRecord | None:
        return self._tool_calls.get(tool_call_id)

    def append_text(self, text: str) -> None:
        if text:
            self._text.append(text)

    def start_tool_call(self, tool_call_id: str, tool_name: str) -> bool:
        if tool_call_id in self._tool_calls:
            return False
        self._tool_calls[tool_call_id] = ToolCallRecord(tool_call_id=tool_call_id, tool_name=tool_name)
        return True

    def append_tool_input(self, tool_call_id: str, delta: str) -> bool:
        """Append to a started tool call; unknown ids are ignored."""

        record = self._tool_calls.get(tool_call_id)
        if record is None:
            return False
        if delta:
            record._parts.append(delta)
        return True

    def complete_tool_call(self, tool_call_id: str, input: str | None = None) -> bool:
        record = self._tool_calls.get(tool_call_id)
        if record is None:
            return False
        if input and not record._parts:
            record._parts.append(input)
        record.completed = True
        return True

    def apply(self, event: StreamEvent) -> None:
        kind = event.type
        if kind is EventType.START:
            self.started = True
            self.warnings = self.warnings + tuple(event.warnings)
        elif kind is EventType.TEXT_DELTA:
            self.append_text(event.text or "")
        elif kind is EventType.TOOL_CALL_START:
            self.start_tool_call(event.tool_call_id or "", event.tool_name or "")
        elif kind is EventType.TOOL_INPUT_DELTA:
            self.append_tool_input(event.tool_call_id or "", event.text or "")
        elif kind is EventType.TOOL_CALL_COMPLETE:
            self.complete_tool_call(event.tool_call_id or "", event.input)
        elif kind is EventType.USAGE and event.usage is not None:
            self.usage = event.usage if self.usage is None else self.usage + event.usage
        elif kind is EventType.FINISH_REASON:
            self.finish_reason = event.finish_reason
        elif kind is EventType.ERROR:
            self.error = event.error
            self.diagnostic = event.diagnostic
        elif kind is EventType.COMPLETE:
            self.completed = True

    def to_output(self) -> TextOutput:
        return TextOutput(
            text=self.text,
            tool_calls=tuple(record.to_tool_call() for record in self._tool_calls.values()),
            finish_reason=self.finish_reason or FinishReason.UNKNOWN,
        )

    def to_result(self, *, provider: str | None = None) -> GenerateResult:
        if self.error is not None:
            diagnostic = self.diagnostic or classify_exception(self.error, provider=provider)
            return Failure(error=self.error, diagnostic=diagnostic)
        return Success(content=self.to_output(), usage=self.usage, warnings=self.warnings)


def accumulate(events: Iterable[StreamEvent]) -> StreamAccumulator:
    """Replay ``events`` into a fresh accumulator."""

    accumulator = StreamAccumulator()
    for event in events:
        accumulator.apply(event)
    return accumulator


class _State(str, Enum):
    NEW = "new"
    STARTED = "started"
    FINISHING = "finishing"
    CLOSED = "closed"


class StreamPipeline:
    """Deliver events to one sink in protocol order.

    Content before ``start`` gets an implicit ``start``; anything after the
    terminal is dropped. Before each content event the request context is
    checked and :class:`CancelledError` raised once it is done.
    """

    def __init__(
        self,
        sink: StreamSink,
        *,
        context: RequestContext | None = None,
        accumulator: StreamAccumulator | None = None,
    ) -> None:
        self._sink = sink
        self._context = context
        self.accumulator = accumulator if accumulator is not None else StreamAccumulator()
        self._state = _State.NEW
        self.content_emitted = False

    @property
    def started(self) -> bool:
        return self._state is not _State.NEW

    @property
    def closed(self) -> bool:
        return self._state is _State.CLOSED

    def _deliver(self, event: StreamEvent) -> None:
        self.accumulator.apply(event)
        self._sink(event)

    def _drop(self, event: StreamEvent, reason: str) -> bool:
        _LOG.warning("Dropping {} event: {}", event.type.value, reason)
        return False

    def emit(self, event: StreamEvent) -> bool:
        """Deliver ``event`` if the protocol allows it; return whether it was delivered."""

        if self._state is _State.CLOSED:
            return self._drop(event, "stream already terminated")
        if event.type is EventType.START:
            if self._state is not _State.NEW:
                return self._drop(event, "stream already started")
            self._state = _State.STARTED
            self._deliver(event)
            return True
        if self._state is _State.NEW:
            self.emit(StreamEvent.start())

        if event.type is EventType.ERROR:
            self._state = _State.CLOSED
            self._deliver(event)
            return True
        if event.type is EventType.COMPLETE:
            if self._state is _State.STARTED:
                self.emit(StreamEvent.finish(FinishReason.UNKNOWN))
            self._state = _State.CLOSED
            self._deliver(event)
            return True
        if self._state is _State.FINISHING:
            return self._drop(event, "only complete may follow finish_reason")
        if event.type is EventType.FINISH_REASON:
            self._state = _State.FINISHING
            self._deliver(event)
            return True

        if event.type in _TOOL_EVENTS and event.type is not EventType.TOOL_CALL_START:
            if self.accumulator.tool_call(event.tool_call_id or "") is None:
                return self._drop(event, f"tool call {event.tool_call_id!r} was never started")
        if self._context is not None and self._context.is_done():
            raise CancelledError(
                "stream cancelled",
                expired=not self._context.is_cancelled(),
            )
        self.content_emitted = True
        self._deliver(event)
        return True

    def text(self, delta: str) -> bool:
        return self.emit(StreamEvent.text_delta(delta))

    def finish(self, reason: FinishReason = FinishReason.STOP, usage: Usage | None = None) -> None:
        if usage is not None:
            self.emit(StreamEvent.usage_event(usage))
        self.emit(StreamEvent.finish(reason))
        self.emit(StreamEvent.complete())

    def fail(self, error: BaseException, diagnostic: ErrorDiagnostic | None = None) -> None:
        self.emit(StreamEvent.failed(error, diagnostic))


@dataclass
class StreamCallbacks:
    """Sink that dispatches each event type to an optional handler."""

    on_start: Callable[[tuple[CallWarning, ...]], None] | None = None
    on_text_delta: Callable[[str], None] | None = None
    on_tool_call_start: Callable[[str, str], None] | None = None
    on_tool_input_delta: Callable[[str, str], None] | None = None
    on_tool_call_complete: Callable[[str, str | None], None] | None = None
    on_usage: Callable[[Usage], None] | None = None
    on_finish_reason: Callable[[FinishReason], None] | None = None
    on_error: Callable[[BaseException, ErrorDiagnostic | None], None] | None = None
    on_complete: Callable[[], None] | None = None

    def __call__(self, event: StreamEvent) -> None:
        kind = event.type
        if kind is EventType.START and self.on_start:
            self.on_start(event.warnings)
        elif kind is EventType.TEXT_DELTA and self.on_text_delta:
            self.on_text_delta(event.text or "")
        elif kind is EventType.TOOL_CALL_START and self.on_tool_call_start:
            self.on_tool_call_start(event.tool_call_id or "", event.tool_name or "")
        elif kind is EventType.TOOL_INPUT_DELTA and self.on_tool_input_delta:
            self.on_tool_input_delta(event.tool_call_id or "", event.text or "")
        elif kind is EventType.TOOL_CALL_COMPLETE and self.on_tool_call_complete:
            self.on_tool_call_complete(event.tool_call_id or "", event.input)
        elif kind is EventType.USAGE and self.on_usage and event.usage is not None:
            self.on_usage(event.usage)
        elif kind is EventType.FINISH_REASON and self.on_finish_reason and event.finish_reason:
            self.on_finish_reason(event.finish_reason)
        elif kind is EventType.ERROR and self.on_error and event.error is not None:
            self.on_error(event.error, event.diagnostic)
        elif kind is EventType.COMPLETE and self.on_complete:
            self.on_complete()


def collect(events: list[StreamEvent]) -> StreamSink:
    """Return a sink that appends every delivered event to ``events``."""

    return events.append
