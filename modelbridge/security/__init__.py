"""Secret handling: key redaction and API key loading."""

from .api_keys import load_api_key
from .redaction import (
    REDACTION_MARKER,
    contains_api_key,
    redact_api_keys,
    redact_headers,
    redact_mapping,
    register_prefix,
)

__all__ = [
    "REDACTION_MARKER",
    "contains_api_key",
    "load_api_key",
    "redact_api_keys",
    "redact_headers",
    "redact_mapping",
    "register_prefix",
]
