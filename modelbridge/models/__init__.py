"""Model capability contract."""

from .base import (
    EmbeddingModel,
    ImageModel,
    LanguageModel,
    Model,
    SpeechModel,
    TranscriptionModel,
)
from .types import (
    CallOptions,
    Capability,
    EmbeddingCallOptions,
    EmbeddingOutput,
    FinishReason,
    GeneratedImage,
    ImageCallOptions,
    ImageOutput,
    LanguageCallOptions,
    Message,
    ModelDescriptor,
    SpeechCallOptions,
    SpeechOutput,
    TextOutput,
    ToolCall,
    ToolSpec,
    TranscriptionCallOptions,
    TranscriptionOutput,
    TranscriptionSegment,
)

__all__ = [
    "CallOptions",
    "Capability",
    "EmbeddingCallOptions",
    "EmbeddingModel",
    "EmbeddingOutput",
    "FinishReason",
    "GeneratedImage",
    "ImageCallOptions",
    "ImageModel",
    "ImageOutput",
    "LanguageCallOptions",
    "LanguageModel",
    "Message",
    "Model",
    "ModelDescriptor",
    "SpeechCallOptions",
    "SpeechModel",
    "SpeechOutput",
    "TextOutput",
    "ToolCall",
    "ToolSpec",
    "TranscriptionCallOptions",
    "TranscriptionModel",
    "TranscriptionOutput",
    "TranscriptionSegment",
]
