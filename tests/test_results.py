from __future__ import annotations

from modelbridge.diagnostics import classify_response
from modelbridge.results import CallWarning, Failure, Success, Usage, WarningType


def test_warning_descriptions() -> None:
    assert CallWarning.unsupported("seed", "ignored by vendor").describe() == (
        "Unsupported feature: seed (ignored by vendor)"
    )
    assert CallWarning.compatibility("tools").describe() == "Compatibility mode: tools"
    other = CallWarning.other("model is deprecated")
    assert other.type is WarningType.OTHER
    assert other.describe() == "model is deprecated"


def test_usage_total_and_addition() -> None:
    assert Usage(input_tokens=3, output_tokens=4).total == 7
    assert Usage(total_tokens=10).total == 10
    combined = Usage(input_tokens=1) + Usage(input_tokens=2, output_tokens=5)
    assert combined == Usage(input_tokens=3, output_tokens=5)


def test_result_tags() -> None:
    assert Success(content="x").ok
    failure = Failure(error=RuntimeError("boom"), diagnostic=classify_response(500))
    assert not failure.ok
    assert failure.message == "Internal Server Error"
