"""Tagged call results, usage and warnings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

from .diagnostics import ErrorDiagnostic

T = TypeVar("T")


class WarningType(str, Enum):
    UNSUPPORTED = "unsupported"
    COMPATIBILITY = "compatibility"
    OTHER = "other"


@dataclass(frozen=True)
class CallWarning:
    """Non-fatal advisory attached to a successful result."""

    type: WarningType
    feature: str | None = None
    details: str | None = None
    message: str | None = None

    @classmethod
    def unsupported(cls, feature: str, details: str | None = None) -> "CallWarning":
        return cls(WarningType.UNSUPPORTED, feature=feature, details=details)

    @classmethod
    def compatibility(cls, feature: str, details: str | None = None) -> "CallWarning":
        return cls(WarningType.COMPATIBILITY, feature=feature, details=details)

    @classmethod
    def other(cls, message: str) -> "CallWarning":
        return cls(WarningType.OTHER, message=message)

    def describe(self) -> str:
        if self.type is WarningType.OTHER:
            return self.message or ""
        label = "Unsupported feature" if self.type is WarningType.UNSUPPORTED else "Compatibility mode"
        text = f"{label}: {self.feature}"
        if self.details:
            text += f" ({self.details})"
        return text


@dataclass(frozen=True)
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=_add_optional(self.input_tokens, other.input_tokens),
            output_tokens=_add_optional(self.output_tokens, other.output_tokens),
            total_tokens=_add_optional(self.total_tokens, other.total_tokens),
        )


def _add_optional(left: int | None, right: int | None) -> int | None:
    if left is None and right is None:
        return None
    return (left or 0) + (right or 0)


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    OTHER = "other"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ToolCall:
    tool_call_id: str
    tool_name: str
    input: str


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    tool_name: str
    output: Any


@dataclass(frozen=True)
class TextOutput:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: FinishReason = FinishReason.STOP
    reasoning: str | None = None
    # Filled by multi-step generation: one entry per model call.
    steps: tuple["StepResult", ...] = ()


@dataclass(frozen=True)
class StepResult:
    index: int
    output: TextOutput
    usage: Usage | None = None
    tool_results: tuple[ToolResult, ...] = ()
    warnings: tuple[CallWarning, ...] = ()


@dataclass(frozen=True)
class ObjectOutput:
    """Structured output parsed from a language model reply."""

    object: Any
    raw_text: str
    finish_reason: FinishReason = FinishReason.STOP


@dataclass(frozen=True)
class ResponseMetadata:
    id: str | None = None
    model_id: str | None = None
    timestamp: float | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Success(Generic[T]):
    content: T
    usage: Usage | None = None
    warnings: tuple[CallWarning, ...] = ()
    response: ResponseMetadata | None = None
    attempts: int = 1

    ok = True


@dataclass(frozen=True)
class Failure:
    error: BaseException
    diagnostic: ErrorDiagnostic
    attempts: int = 1

    ok = False

    @property
    def message(self) -> str:
        return self.diagnostic.message or str(self.error)


GenerateResult = Union[Success[Any], Failure]
