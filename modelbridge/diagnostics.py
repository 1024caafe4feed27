"""Error diagnostics: classify vendor failures into a closed taxonomy.

Bindings report an HTTP status and the raw response body; the classifier
turns that into an :class:`ErrorDiagnostic` carrying a kind, a retryability
verdict and a short human message. Anything taken from the response is run
through the secret redactor before it is stored.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Mapping

import httpx

from .errors import ApiCallError, CancelledError, RateLimitExceededError, TransportFailure
from .security.redaction import redact_api_keys

MESSAGE_CAPACITY = 1024
RESPONSE_BODY_CAPACITY = 2048

_REQUEST_ID_HEADERS = ("x-request-id", "request-id", "x-amzn-requestid")


class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    NOT_FOUND = "not_found"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.SERVER, ErrorKind.NETWORK})
_RETRYABLE_STATUSES = frozenset({408, 409})
_INVALID_REQUEST_STATUSES = frozenset({400, 413, 415, 422})

_STATUS_MESSAGES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    408: "Request Timeout",
    409: "Conflict",
    413: "Payload Too Large",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if 500 <= status_code <= 599:
        return ErrorKind.SERVER
    if status_code in _INVALID_REQUEST_STATUSES:
        return ErrorKind.INVALID_REQUEST
    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind, status_code: int | None) -> bool:
    return kind in _RETRYABLE_KINDS or status_code in _RETRYABLE_STATUSES


def status_message(status_code: int) -> str:
    return _STATUS_MESSAGES.get(status_code, "API Error")


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds or as an HTTP date."""

    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
    if seconds < 0:
        return None
    return seconds


def _decode_body(body: str | bytes | None) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _extract_error_fields(body: str) -> tuple[str | None, str | None]:
    """Return (message, vendor code) from the common JSON error envelopes."""

    try:
        root = json.loads(body)
    except ValueError:
        return None, None
    if not isinstance(root, dict):
        return None, None
    error = root.get("error")
    if isinstance(error, dict):
        code = error.get("code") or error.get("type")
        message = error.get("message")
        if isinstance(message, str):
            return message, str(code) if code is not None else None
    if isinstance(error, str):
        return error, None
    message = root.get("message")
    if isinstance(message, str):
        code = root.get("code")
        return message, str(code) if code is not None else None
    return None, None


def _lower_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(name).lower(): str(value) for name, value in headers.items()}


@dataclass
class ErrorDiagnostic:
    """Normalized failure record.

    Callers may pass an instance on their call options; the model fills it in
    when the call fails.
    """

    status_code: int | None = None
    kind: ErrorKind = ErrorKind.UNKNOWN
    message: str | None = None
    provider: str | None = None
    is_retryable: bool = False
    response_body: str | None = None
    code: str | None = None
    request_id: str | None = None
    retry_after_s: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def set_message(self, message: str) -> None:
        self.message = redact_api_keys(message)[:MESSAGE_CAPACITY]

    def set_response_body(self, body: str | bytes | None) -> None:
        text = _decode_body(body)
        self.response_body = redact_api_keys(text)[:RESPONSE_BODY_CAPACITY] if text else None

    def classify_status(self) -> None:
        if self.status_code is None:
            return
        self.kind = kind_for_status(self.status_code)
        self.is_retryable = is_retryable(self.kind, self.status_code)

    def populate_from_response(
        self,
        status_code: int,
        body: str | bytes | None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        text = _decode_body(body)
        self.status_code = status_code
        self.set_response_body(text)
        self.classify_status()
        message, code = _extract_error_fields(text)
        self.set_message(message if message else status_message(status_code))
        self.code = code
        lowered = _lower_headers(headers)
        for name in _REQUEST_ID_HEADERS:
            if name in lowered:
                self.request_id = lowered[name]
                break
        self.retry_after_s = parse_retry_after(lowered.get("retry-after"))

    def populate_from_transport_failure(self, exc: BaseException) -> None:
        # A transport failure means no response; any earlier status is stale.
        self.status_code = None
        self.response_body = None
        self.code = None
        self.request_id = None
        self.retry_after_s = None
        self.kind = ErrorKind.NETWORK
        self.is_retryable = True
        self.set_message(str(exc) or type(exc).__name__)

    def update_from(self, other: "ErrorDiagnostic") -> None:
        """Copy every field of ``other`` into this sink."""

        self.status_code = other.status_code
        self.kind = other.kind
        self.message = other.message
        self.provider = other.provider
        self.is_retryable = other.is_retryable
        self.response_body = other.response_body
        self.code = other.code
        self.request_id = other.request_id
        self.retry_after_s = other.retry_after_s
        self.extra = dict(other.extra)

    def copy(self) -> "ErrorDiagnostic":
        return replace(self, extra=dict(self.extra))

    def format(self) -> str:
        parts: list[str] = []
        if self.provider:
            parts.append(f"[{self.provider}] ")
        parts.append(self.kind.value)
        if self.status_code is not None:
            parts.append(f" (HTTP {self.status_code})")
        if self.message:
            parts.append(f": {self.message}")
        if self.is_retryable:
            parts.append(" [retryable]")
        return "".join(parts)

    def __str__(self) -> str:
        return self.format()


def classify_response(
    status_code: int,
    body: str | bytes | None = None,
    *,
    provider: str | None = None,
    headers: Mapping[str, str] | None = None,
) -> ErrorDiagnostic:
    diagnostic = ErrorDiagnostic(provider=provider)
    diagnostic.populate_from_response(status_code, body, headers)
    return diagnostic


def classify_transport_failure(exc: BaseException, *, provider: str | None = None) -> ErrorDiagnostic:
    diagnostic = ErrorDiagnostic(provider=provider)
    diagnostic.populate_from_transport_failure(exc)
    return diagnostic


def is_transport_exception(exc: BaseException) -> bool:
    return isinstance(
        exc,
        (
            TransportFailure,
            httpx.TransportError,
            TimeoutError,
            asyncio.TimeoutError,
            ConnectionError,
        ),
    )


def classify_exception(exc: BaseException, *, provider: str | None = None) -> ErrorDiagnostic:
    """Map any failure raised by a model operation to a diagnostic."""

    if isinstance(exc, ApiCallError):
        diagnostic = exc.diagnostic.copy()
        if diagnostic.provider is None:
            diagnostic.provider = provider
        return diagnostic
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(
            exc.response.status_code,
            exc.response.content,
            provider=provider,
            headers=exc.response.headers,
        )
    if is_transport_exception(exc):
        return classify_transport_failure(exc, provider=provider)
    diagnostic = ErrorDiagnostic(provider=provider)
    diagnostic.set_message(str(exc) or type(exc).__name__)
    diagnostic.extra["error_type"] = type(exc).__name__
    if isinstance(exc, CancelledError):
        diagnostic.extra["cancelled"] = True
        diagnostic.extra["expired"] = exc.expired
    elif isinstance(exc, RateLimitExceededError):
        diagnostic.kind = ErrorKind.RATE_LIMIT
        diagnostic.retry_after_s = exc.retry_after_s
    return diagnostic


def raise_for_response(
    status_code: int,
    body: str | bytes | None,
    *,
    provider: str | None = None,
    headers: Mapping[str, str] | None = None,
    url: str | None = None,
) -> None:
    """Raise :class:`ApiCallError` for a non-2xx response."""

    if 200 <= status_code < 300:
        return
    raise ApiCallError(
        classify_response(status_code, body, provider=provider, headers=headers),
        url=url,
    )
