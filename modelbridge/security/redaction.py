"""Secret and sensitive data redaction helpers."""

from __future__ import annotations

import re
import threading
from typing import Any, Iterable, Mapping

REDACTION_MARKER = "[REDACTED]"

# Vendor key prefixes. Longer prefixes must win over their own prefixes
# ("sk-proj-" over "sk-"), so the pattern is rebuilt longest first.
DEFAULT_KEY_PREFIXES: tuple[str, ...] = (
    "sk-proj-",
    "sk-",
    "anthropic-sk-ant-",
    "AIza",
    "AKIA",
    "msk-",
    "co-",
    "gsk_",
    "xai-",
)

# A key runs until whitespace, a quote, a closing bracket, a comma or a semicolon.
_KEY_BODY = r"[^\s,\"';)\]}]*"

_SENSITIVE_KEYS = {
    "api_key",
    "apikey",
    "api-key",
    "x-api-key",
    "x-goog-api-key",
    "authorization",
    "proxy-authorization",
    "token",
    "access_token",
    "refresh_token",
    "secret",
    "client_secret",
    "password",
}

_lock = threading.Lock()
_prefixes: list[str] = list(DEFAULT_KEY_PREFIXES)


def _build_pattern(prefixes: Iterable[str]) -> re.Pattern[str]:
    ordered = sorted(set(prefixes), key=len, reverse=True)
    alternation = "|".join(re.escape(prefix) for prefix in ordered)
    return re.compile(f"(?:{alternation}){_KEY_BODY}")


_pattern = _build_pattern(_prefixes)


def key_prefixes() -> tuple[str, ...]:
    return tuple(_prefixes)


def register_prefix(prefix: str) -> None:
    """Add a vendor key prefix to the redaction set."""

    global _pattern
    if not prefix or prefix.isspace():
        raise ValueError("key prefix must be a non-empty string")
    if REDACTION_MARKER.find(prefix) != -1:
        raise ValueError(f"key prefix {prefix!r} would match the redaction marker")
    with _lock:
        if prefix in _prefixes:
            return
        _prefixes.append(prefix)
        _pattern = _build_pattern(_prefixes)


def reset_prefixes() -> None:
    global _pattern
    with _lock:
        _prefixes[:] = list(DEFAULT_KEY_PREFIXES)
        _pattern = _build_pattern(_prefixes)


def contains_api_key(text: str) -> bool:
    return any(prefix in text for prefix in _prefixes)


def redact_api_keys(text: str) -> str:
    """Mask every key-shaped run in ``text`` with the redaction marker.

    The input object itself is returned when nothing needs masking, and
    redacting already-redacted text is a no-op.
    """

    if not text or not contains_api_key(text):
        return text
    return _pattern.sub(REDACTION_MARKER, text)


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key and key.lower() in _SENSITIVE_KEYS:
        return REDACTION_MARKER
    if isinstance(value, str):
        return redact_api_keys(value)
    if isinstance(value, Mapping):
        return redact_mapping(value)
    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]
    return value


def redact_mapping(payload: Mapping[str, Any]) -> dict[str, Any]:
    return {key: redact_value(value, key=key) for key, value in payload.items()}


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {name: redact_value(value, key=name) for name, value in headers.items()}
