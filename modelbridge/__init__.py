"""Uniform execution core for calling AI model vendors."""

from .api import (
    cosine_similarity,
    embed,
    embed_many,
    generate_image,
    generate_object,
    generate_speech,
    generate_text,
    parse_json_output,
    stream_text,
    transcribe,
)
from .config import BridgeConfig, apply_config, load_config
from .context import RequestContext
from .diagnostics import ErrorDiagnostic, ErrorKind, classify_exception, classify_response
from .errors import (
    ApiCallError,
    CancelledError,
    ConfigurationError,
    ModelBridgeError,
    NoSuchModelError,
    ParseError,
    RateLimitExceededError,
    ResourceExhaustedError,
    TooManyEmbeddingValuesError,
    ToolExecutionError,
    TransportFailure,
    UnsupportedFunctionalityError,
    ValidationError,
)
from .logging_utils import configure_logging, get_logger
from .middleware import (
    DefaultSettingsMiddleware,
    LoggingMiddleware,
    MiddlewareChain,
    MiddlewareContext,
    RateLimitMiddleware,
)
from .models import (
    Capability,
    EmbeddingModel,
    ImageModel,
    LanguageModel,
    Message,
    ModelDescriptor,
    SpeechModel,
    TranscriptionModel,
)
from .registry import CapabilityRegistry, LookupResult, LookupStatus, Provider, ProviderRegistry
from .resilience import RetryExecutor, RetryPolicy
from .results import (
    CallWarning,
    Failure,
    GenerateResult,
    ObjectOutput,
    StepResult,
    Success,
    ToolResult,
    Usage,
)
from .security import load_api_key, redact_api_keys
from .streaming import StreamAccumulator, StreamCallbacks, StreamEvent, StreamPipeline, accumulate
from .transport import HttpResponse, HttpTransport, HttpxTransport, combine_headers

__version__ = "0.1.0"

__all__ = [
    "ApiCallError",
    "BridgeConfig",
    "CallWarning",
    "CancelledError",
    "Capability",
    "CapabilityRegistry",
    "ConfigurationError",
    "DefaultSettingsMiddleware",
    "EmbeddingModel",
    "ErrorDiagnostic",
    "ErrorKind",
    "Failure",
    "GenerateResult",
    "HttpResponse",
    "HttpTransport",
    "HttpxTransport",
    "ImageModel",
    "LanguageModel",
    "LoggingMiddleware",
    "LookupResult",
    "LookupStatus",
    "Message",
    "MiddlewareChain",
    "MiddlewareContext",
    "ModelBridgeError",
    "ModelDescriptor",
    "NoSuchModelError",
    "ObjectOutput",
    "ParseError",
    "Provider",
    "ProviderRegistry",
    "RateLimitExceededError",
    "RateLimitMiddleware",
    "RequestContext",
    "ResourceExhaustedError",
    "RetryExecutor",
    "RetryPolicy",
    "SpeechModel",
    "StepResult",
    "StreamAccumulator",
    "StreamCallbacks",
    "StreamEvent",
    "StreamPipeline",
    "Success",
    "TooManyEmbeddingValuesError",
    "ToolExecutionError",
    "ToolResult",
    "TranscriptionModel",
    "TransportFailure",
    "UnsupportedFunctionalityError",
    "Usage",
    "ValidationError",
    "accumulate",
    "apply_config",
    "classify_exception",
    "classify_response",
    "combine_headers",
    "configure_logging",
    "cosine_similarity",
    "embed",
    "embed_many",
    "generate_image",
    "generate_object",
    "generate_speech",
    "generate_text",
    "get_logger",
    "load_api_key",
    "load_config",
    "parse_json_output",
    "redact_api_keys",
    "stream_text",
    "transcribe",
]
