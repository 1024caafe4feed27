"""Structured logging configuration built on top of loguru."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .security.redaction import redact_api_keys


def _redact_record(record: dict[str, Any]) -> None:
    record["message"] = redact_api_keys(record["message"])


def configure_logging(log_dir: Path | str | None = None, level: str = "INFO") -> None:
    """Configure Loguru sinks for console and optional file output.

    Every record passes through the secret redactor before it reaches a sink.
    """

    logger.remove()
    logger.configure(extra={"component": "modelbridge"}, patcher=_redact_record)

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "thread={thread.name} | "
        "<cyan>{extra[component]}</cyan> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stderr,
        format=log_format,
        colorize=True,
        level=level,
    )

    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        logger.add(
            path / "modelbridge.log",
            rotation="1 day",
            retention="14 days",
            compression="gz",
            level=level,
            backtrace=False,
            diagnose=False,
            format=log_format,
        )


def get_logger(name: Optional[str] = None):
    """Return a child logger with contextualized name.

    The redactor is attached to the logger itself, so records are scrubbed
    even when the host never calls :func:`configure_logging`.
    """

    redacting = logger.patch(_redact_record)
    if name:
        return redacting.bind(component=name)
    return redacting
