from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from modelbridge.models import (  # noqa: E402
    EmbeddingModel,
    EmbeddingOutput,
    GeneratedImage,
    ImageModel,
    ImageOutput,
    LanguageModel,
    SpeechModel,
    SpeechOutput,
    TextOutput,
    TranscriptionModel,
    TranscriptionOutput,
)
from modelbridge.resilience import RetryPolicy  # noqa: E402
from modelbridge.results import Success, Usage  # noqa: E402
from modelbridge.security.redaction import reset_prefixes  # noqa: E402

# Retries without waiting.
FAST_RETRY = RetryPolicy(max_retries=2, initial_delay_s=0.0, jitter=0.0)


class ScriptedMixin:
    """Replays ``script`` one entry per call; exceptions are raised."""

    def __init__(self, *args: Any, script: list[Any] | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("retry_policy", FAST_RETRY)
        super().__init__(*args, **kwargs)
        self.script = list(script or [])
        self.calls: list[Any] = []

    def _next(self, options: Any) -> Any:
        self.calls.append(options)
        if not self.script:
            raise AssertionError("no scripted response left")
        outcome = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeLanguageModel(ScriptedMixin, LanguageModel):
    async def _do_generate(self, options):
        return self._next(options)


class FakeEmbeddingModel(EmbeddingModel):
    def __init__(self, *args: Any, max_per_call: int | None = 2, fail_on_call: int | None = None, **kwargs: Any):
        kwargs.setdefault("retry_policy", RetryPolicy.none())
        super().__init__(*args, **kwargs)
        self.max_embeddings_per_call = max_per_call
        self.fail_on_call = fail_on_call
        self.batches: list[list[str]] = []

    async def _do_generate(self, options):
        self.batches.append(list(options.values))
        if self.fail_on_call is not None and len(self.batches) == self.fail_on_call:
            raise ValueError("embedding backend rejected batch")
        return Success(
            content=EmbeddingOutput(embeddings=[[float(len(value)), 1.0] for value in options.values]),
            usage=Usage(input_tokens=len(options.values)),
        )


class FakeImageModel(ImageModel):
    max_images_per_call = 2

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.requested: list[int] = []

    async def _do_generate(self, options):
        self.requested.append(options.n)
        return ImageOutput(images=[GeneratedImage(data=f"img-{i}") for i in range(options.n)])


class FakeSpeechModel(SpeechModel):
    async def _do_generate(self, options):
        return SpeechOutput(audio=options.text.encode("utf-8"))


class FakeTranscriptionModel(TranscriptionModel):
    async def _do_generate(self, options):
        return TranscriptionOutput(text="hello world", language="en")


def text_result(text: str, **kwargs: Any) -> Success:
    return Success(content=TextOutput(text=text), **kwargs)


@pytest.fixture(autouse=True)
def _default_redaction_prefixes():
    reset_prefixes()
    yield
    reset_prefixes()


@pytest.fixture
def anyio_backend():
    # The library is built on asyncio; run anyio-marked tests on that backend only.
    return "asyncio"
