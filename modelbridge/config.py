"""Configuration loading and validation using Pydantic models."""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .logging_utils import configure_logging, get_logger
from .resilience import RetryPolicy
from .security.redaction import register_prefix
from .transport import DEFAULT_TIMEOUT_S, HttpxTransport


class RetryConfig(BaseModel):
    preset: Optional[Literal["default", "aggressive", "none"]] = Field(
        None,
        description="Start from a named policy; explicit fields below override it.",
    )
    max_retries: Optional[int] = Field(None, ge=0)
    initial_delay_s: Optional[float] = Field(None, gt=0)
    max_delay_s: Optional[float] = Field(None, gt=0)
    backoff_multiplier: Optional[float] = Field(None, ge=1.0)
    jitter: Optional[float] = Field(
        None,
        ge=0.0,
        le=1.0,
        description="Fraction of each delay that may be shaved off at random.",
    )
    retry_on_rate_limit: Optional[bool] = None
    retry_on_server_error: Optional[bool] = None
    retry_on_timeout: Optional[bool] = None
    retry_on_network: Optional[bool] = None

    def to_policy(self) -> RetryPolicy:
        if self.preset == "aggressive":
            base = RetryPolicy.aggressive()
        elif self.preset == "none":
            base = RetryPolicy.none()
        else:
            base = RetryPolicy()
        overrides = self.model_dump(exclude={"preset"}, exclude_none=True)
        if not overrides:
            return base
        fields = {name: getattr(base, name) for name in RetryPolicy.__dataclass_fields__}
        fields.update(overrides)
        return RetryPolicy(**fields)


class LoggingConfig(BaseModel):
    level: str = Field("INFO", description="Minimum level for every sink.")
    log_dir: Optional[Path] = Field(
        None,
        description="Directory for the rotating log file; console only when unset.",
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level


class RedactionConfig(BaseModel):
    extra_prefixes: list[str] = Field(
        default_factory=list,
        description="Additional credential prefixes scrubbed from logs and diagnostics.",
    )

    @field_validator("extra_prefixes")
    @classmethod
    def reject_empty(cls, value: list[str]) -> list[str]:
        if any(not prefix for prefix in value):
            raise ValueError("redaction prefixes must be non-empty")
        return value


class TransportConfig(BaseModel):
    timeout_s: float = Field(DEFAULT_TIMEOUT_S, gt=0, description="Per-request timeout used when a model sets none.")
    default_headers: dict[str, str] = Field(default_factory=dict)

    def build(self) -> HttpxTransport:
        return HttpxTransport(default_headers=self.default_headers, timeout_s=self.timeout_s)


class BridgeConfig(BaseModel):
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()
    redaction: RedactionConfig = RedactionConfig()
    transport: TransportConfig = TransportConfig()


def load_config(path: Path | str) -> BridgeConfig:
    """Load YAML configuration from disk."""

    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return BridgeConfig.model_validate(data or {})


def apply_config(config: BridgeConfig) -> RetryPolicy:
    """Apply process-wide settings and return the configured retry policy."""

    configure_logging(config.logging.log_dir, level=config.logging.level)
    for prefix in config.redaction.extra_prefixes:
        register_prefix(prefix)
    policy = config.retry.to_policy()
    get_logger("config").info(
        "Configured retries: max_retries={} initial_delay_s={}",
        policy.max_retries,
        policy.initial_delay_s,
    )
    return policy
