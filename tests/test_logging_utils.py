from __future__ import annotations

from loguru import logger

from modelbridge.logging_utils import configure_logging, get_logger
from modelbridge.security.redaction import REDACTION_MARKER


def test_records_are_redacted_and_tagged(tmp_path) -> None:
    configure_logging(tmp_path, level="DEBUG")
    captured: list[dict] = []
    sink_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    try:
        get_logger("retry").warning("request failed with key {}", "sk-live-123")
    finally:
        logger.remove(sink_id)
    assert captured
    record = captured[-1]
    assert "sk-live-123" not in record["message"]
    assert REDACTION_MARKER in record["message"]
    assert record["extra"]["component"] == "retry"
    assert (tmp_path / "modelbridge.log").exists()
    configure_logging()


def test_component_loggers_redact_without_configuration() -> None:
    logger.remove()
    logger.configure(patcher=lambda record: None)
    captured: list[str] = []
    sink_id = logger.add(lambda message: captured.append(message.record["message"]), level="DEBUG")
    try:
        get_logger("transport").warning("Request failed: {}", "key=sk-secret123")
        get_logger().warning("bare logger with sk-secret456")
    finally:
        logger.remove(sink_id)
        configure_logging()
    assert len(captured) == 2
    assert all("sk-secret" not in message for message in captured)
    assert all(REDACTION_MARKER in message for message in captured)
