"""Failure taxonomy shared by every model binding."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .diagnostics import ErrorDiagnostic, ErrorKind


class ModelBridgeError(RuntimeError):
    """Base class for all errors produced by the core."""


class ValidationError(ModelBridgeError):
    """Malformed caller input. Never retried."""


class TooManyEmbeddingValuesError(ValidationError):
    def __init__(
        self,
        *,
        provider: str,
        model_id: str,
        max_embeddings_per_call: int,
        values_count: int,
    ) -> None:
        super().__init__(
            f"Too many values for a single embedding call: {provider}/{model_id} accepts "
            f"{max_embeddings_per_call}, got {values_count}"
        )
        self.provider = provider
        self.model_id = model_id
        self.max_embeddings_per_call = max_embeddings_per_call
        self.values_count = values_count


class CancelledError(ModelBridgeError):
    """The request context was cancelled or its deadline passed."""

    def __init__(self, message: str = "request cancelled", *, expired: bool = False) -> None:
        super().__init__(message)
        self.expired = expired


class ConfigurationError(ModelBridgeError):
    """Missing transport, credentials or settings. Fatal."""


class ParseError(ModelBridgeError):
    """The vendor returned a body that could not be understood. Never retried."""

    def __init__(self, message: str, *, text: str | None = None) -> None:
        super().__init__(message)
        self.text = text


class ResourceExhaustedError(ModelBridgeError):
    """A local resource limit was hit. Propagated immediately."""


class RateLimitExceededError(ModelBridgeError):
    """A client-side request limit refused the call before it was sent."""

    def __init__(self, message: str, *, retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class NoSuchModelError(ModelBridgeError):
    def __init__(self, model_id: str, *, provider: str | None = None, capability: str | None = None) -> None:
        where = f" for provider '{provider}'" if provider else ""
        kind = f"{capability} model" if capability else "model"
        super().__init__(f"No such {kind} '{model_id}'{where}")
        self.model_id = model_id
        self.provider = provider
        self.capability = capability


class UnsupportedFunctionalityError(ModelBridgeError):
    def __init__(self, functionality: str) -> None:
        super().__init__(f"'{functionality}' functionality not supported.")
        self.functionality = functionality


class ToolExecutionError(ModelBridgeError):
    """A caller-supplied tool executor failed or is missing."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class TransportFailure(ModelBridgeError):
    """No HTTP response was received (connection, DNS, TLS, read timeout)."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ApiCallError(ModelBridgeError):
    """A vendor answered with a non-success HTTP status."""

    def __init__(self, diagnostic: "ErrorDiagnostic", *, url: str | None = None) -> None:
        super().__init__(diagnostic.format())
        self.diagnostic = diagnostic
        self.url = url

    @property
    def status_code(self) -> int | None:
        return self.diagnostic.status_code

    @property
    def kind(self) -> "ErrorKind":
        return self.diagnostic.kind

    @property
    def is_retryable(self) -> bool:
        return self.diagnostic.is_retryable
