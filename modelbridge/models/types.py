"""Model descriptors, call options and capability outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..context import RequestContext
from ..diagnostics import ErrorDiagnostic
from ..resilience import RetryPolicy
from ..results import FinishReason, TextOutput, ToolCall


class Capability(str, Enum):
    LANGUAGE = "language"
    EMBEDDING = "embedding"
    IMAGE = "image"
    SPEECH = "speech"
    TRANSCRIPTION = "transcription"


@dataclass(frozen=True)
class ModelDescriptor:
    provider: str
    model_id: str
    capability: Capability

    def __str__(self) -> str:
        return f"{self.provider}:{self.model_id}"


@dataclass
class CallOptions:
    """Fields shared by every capability's call options."""

    headers: dict[str, str] | None = None
    # Passed through to the binding untouched.
    provider_options: Any = None
    context: RequestContext | None = None
    retry_policy: RetryPolicy | None = None
    diagnostic: ErrorDiagnostic | None = None


@dataclass(frozen=True)
class Message:
    role: Literal["system", "user", "assistant", "tool"]
    content: str
    tool_call_id: str | None = None
    # Calls requested by an assistant turn, echoed back on the next step.
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class LanguageCallOptions(CallOptions):
    messages: list[Message] = field(default_factory=list)
    system: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop_sequences: list[str] | None = None
    tools: list[ToolSpec] | None = None
    tool_choice: str | None = None


@dataclass
class EmbeddingCallOptions(CallOptions):
    values: list[str] = field(default_factory=list)


@dataclass
class ImageCallOptions(CallOptions):
    prompt: str | None = None
    n: int = 1
    size: str | None = None
    aspect_ratio: str | None = None
    seed: int | None = None


@dataclass
class SpeechCallOptions(CallOptions):
    text: str = ""
    voice: str | None = None
    output_format: str | None = None
    instructions: str | None = None
    speed: float | None = None
    language: str | None = None


@dataclass
class TranscriptionCallOptions(CallOptions):
    audio: bytes | str = b""
    media_type: str = ""


@dataclass(frozen=True)
class EmbeddingOutput:
    embeddings: list[list[float]]


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes | str
    media_type: str = "image/png"


@dataclass(frozen=True)
class ImageOutput:
    images: list[GeneratedImage]


@dataclass(frozen=True)
class SpeechOutput:
    audio: bytes
    media_type: str = "audio/mpeg"


@dataclass(frozen=True)
class TranscriptionSegment:
    text: str
    start_s: float
    end_s: float


@dataclass(frozen=True)
class TranscriptionOutput:
    text: str
    segments: tuple[TranscriptionSegment, ...] = ()
    language: str | None = None
    duration_s: float | None = None
