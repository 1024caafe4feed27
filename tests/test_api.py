from __future__ import annotations

import math

import pytest
from pydantic import BaseModel

from conftest import (
    FakeEmbeddingModel,
    FakeImageModel,
    FakeLanguageModel,
    FakeSpeechModel,
    FakeTranscriptionModel,
    text_result,
)
from modelbridge.api import (
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
from modelbridge.context import RequestContext
from modelbridge.diagnostics import ErrorDiagnostic
from modelbridge.errors import CancelledError, ParseError, ToolExecutionError, ValidationError
from modelbridge.models import Message
from modelbridge.results import (
    Failure,
    FinishReason,
    ObjectOutput,
    StepResult,
    Success,
    TextOutput,
    ToolCall,
    Usage,
)
from modelbridge.streaming import EventType, StreamEvent, collect


@pytest.mark.anyio
async def test_generate_text_from_prompt() -> None:
    model = FakeLanguageModel("openai", "gpt-4o", script=[text_result("hi there")])
    result = await generate_text(model, "hello", system="be brief", temperature=0.2)
    assert isinstance(result, Success)
    assert result.content.text == "hi there"
    options = model.calls[0]
    assert options.messages == [Message(role="user", content="hello")]
    assert options.system == "be brief"
    assert options.temperature == 0.2


@pytest.mark.anyio
async def test_generate_text_requires_exactly_one_input() -> None:
    model = FakeLanguageModel("openai", "gpt-4o", script=[text_result("x")])
    diagnostic = ErrorDiagnostic()
    neither = await generate_text(model, diagnostic=diagnostic)
    assert isinstance(neither, Failure)
    assert isinstance(neither.error, ValidationError)
    assert "exactly one" in diagnostic.message

    both = await generate_text(model, "a", messages=[Message(role="user", content="b")])
    assert isinstance(both, Failure)
    assert model.calls == []


@pytest.mark.anyio
async def test_stream_text_delivers_events() -> None:
    model = FakeLanguageModel("openai", "gpt-4o", script=[text_result("streamed")])
    events: list[StreamEvent] = []
    acc = await stream_text(model, collect(events), "go")
    assert acc.text == "streamed"
    assert events[-1].type is EventType.COMPLETE

    invalid: list[StreamEvent] = []
    acc = await stream_text(model, collect(invalid))
    assert [event.type for event in invalid] == [EventType.START, EventType.ERROR]
    assert isinstance(acc.error, ValidationError)


@pytest.mark.anyio
async def test_embed_single_value() -> None:
    model = FakeEmbeddingModel("openai", "text-embedding-3-small")
    result = await embed(model, "abc")
    assert isinstance(result, Success)
    assert result.content == [3.0, 1.0]

    empty = await embed(model, "")
    assert isinstance(empty, Failure)
    assert isinstance(empty.error, ValidationError)


@pytest.mark.anyio
async def test_embed_many_batches_in_order_and_sums_usage() -> None:
    model = FakeEmbeddingModel("openai", "text-embedding-3-small", max_per_call=2)
    values = ["a", "bb", "ccc", "dddd", "eeeee"]
    result = await embed_many(model, values)
    assert isinstance(result, Success)
    assert model.batches == [["a", "bb"], ["ccc", "dddd"], ["eeeee"]]
    assert [vector[0] for vector in result.content.embeddings] == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert result.usage == Usage(input_tokens=5)
    assert result.attempts == 3


@pytest.mark.anyio
async def test_embed_many_is_all_or_nothing() -> None:
    model = FakeEmbeddingModel("openai", "text-embedding-3-small", max_per_call=2, fail_on_call=2)
    diagnostic = ErrorDiagnostic()
    result = await embed_many(model, ["a", "b", "c", "d", "e"], diagnostic=diagnostic)
    assert isinstance(result, Failure)
    assert len(model.batches) == 2
    assert diagnostic.extra["error_type"] == "ValueError"


@pytest.mark.anyio
async def test_embed_many_without_limit_uses_one_call() -> None:
    model = FakeEmbeddingModel("local", "minilm", max_per_call=None)
    result = await embed_many(model, ["a", "b", "c"])
    assert isinstance(result, Success)
    assert model.batches == [["a", "b", "c"]]

    empty = await embed_many(model, [])
    assert isinstance(empty, Success)
    assert empty.content.embeddings == []


@pytest.mark.anyio
async def test_embed_many_honors_cancellation() -> None:
    model = FakeEmbeddingModel("openai", "text-embedding-3-small", max_per_call=1)
    context = RequestContext()
    context.cancel()
    result = await embed_many(model, ["a", "b"], context=context)
    assert isinstance(result, Failure)
    assert isinstance(result.error, CancelledError)
    assert model.batches == []


@pytest.mark.anyio
async def test_generate_image_splits_by_per_call_limit() -> None:
    model = FakeImageModel("openai", "dall-e-3")
    result = await generate_image(model, "a lighthouse", n=5)
    assert isinstance(result, Success)
    assert model.requested == [2, 2, 1]
    assert len(result.content.images) == 5

    invalid = await generate_image(model, "a lighthouse", n=0)
    assert isinstance(invalid, Failure)


@pytest.mark.anyio
async def test_speech_and_transcription() -> None:
    speech = await generate_speech(FakeSpeechModel("openai", "tts-1"), "hello", voice="alloy")
    assert isinstance(speech, Success)
    assert speech.content.audio == b"hello"

    blank = await generate_speech(FakeSpeechModel("openai", "tts-1"), "")
    assert isinstance(blank, Failure)

    transcript = await transcribe(FakeTranscriptionModel("openai", "whisper-1"), b"RIFF", "audio/wav")
    assert isinstance(transcript, Success)
    assert transcript.content.text == "hello world"

    missing_type = await transcribe(FakeTranscriptionModel("openai", "whisper-1"), b"RIFF", "")
    assert isinstance(missing_type.error, ValidationError)


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)
    assert cosine_similarity([3.0, 4.0], [4.0, 3.0]) == pytest.approx(24.0 / 25.0)
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert not math.isnan(cosine_similarity([0.0], [0.0]))


def _tool_turn(*calls: ToolCall, usage: Usage | None = None) -> Success:
    return Success(
        content=TextOutput(text="", tool_calls=calls, finish_reason=FinishReason.TOOL_CALLS),
        usage=usage,
    )


@pytest.mark.anyio
async def test_tool_loop_feeds_results_back() -> None:
    model = FakeLanguageModel(
        "openai",
        "gpt-4o",
        script=[
            _tool_turn(ToolCall("call-1", "weather", '{"city": "Oslo"}'), usage=Usage(input_tokens=5)),
            text_result("It is sunny in Oslo.", usage=Usage(input_tokens=7, output_tokens=3)),
        ],
    )
    seen: list[StepResult] = []

    async def weather(call: ToolCall) -> dict:
        return {"city": "Oslo", "sky": "sunny"}

    result = await generate_text(
        model,
        "weather?",
        max_steps=3,
        tool_executors={"weather": weather},
        on_step_finish=seen.append,
    )
    assert isinstance(result, Success)
    assert result.content.text == "It is sunny in Oslo."
    assert [step.index for step in result.content.steps] == [0, 1]
    assert seen == list(result.content.steps)
    assert seen[0].tool_results[0].output == {"city": "Oslo", "sky": "sunny"}
    assert result.usage == Usage(input_tokens=12, output_tokens=3)
    assert result.attempts == 2

    follow_up = model.calls[1].messages
    assert [message.role for message in follow_up] == ["user", "assistant", "tool"]
    assert follow_up[1].tool_calls[0].tool_call_id == "call-1"
    assert follow_up[2].tool_call_id == "call-1"
    assert follow_up[2].content == '{"city": "Oslo", "sky": "sunny"}'


@pytest.mark.anyio
async def test_tool_loop_stops_at_max_steps() -> None:
    model = FakeLanguageModel(
        "openai", "gpt-4o", script=[_tool_turn(ToolCall("c", "echo", "{}"))]
    )
    result = await generate_text(
        model, "loop", max_steps=2, tool_executors={"echo": lambda call: "again"}
    )
    assert isinstance(result, Success)
    assert result.content.finish_reason is FinishReason.TOOL_CALLS
    assert len(result.content.steps) == 2
    assert len(model.calls) == 2


@pytest.mark.anyio
async def test_single_step_does_not_run_tools() -> None:
    ran: list[str] = []
    model = FakeLanguageModel("openai", "gpt-4o", script=[_tool_turn(ToolCall("c", "echo", "{}"))])
    result = await generate_text(model, "once", tool_executors={"echo": lambda call: ran.append("x")})
    assert isinstance(result, Success)
    assert ran == []
    assert result.content.steps[0].tool_results == ()


@pytest.mark.anyio
async def test_tool_failures_fail_the_call() -> None:
    def broken(call: ToolCall) -> str:
        raise RuntimeError("disk full")

    model = FakeLanguageModel("openai", "gpt-4o", script=[_tool_turn(ToolCall("c", "save", "{}"))])
    diagnostic = ErrorDiagnostic()
    result = await generate_text(
        model, "save it", max_steps=2, tool_executors={"save": broken}, diagnostic=diagnostic
    )
    assert isinstance(result, Failure)
    assert isinstance(result.error, ToolExecutionError)
    assert "disk full" in diagnostic.message

    missing = await generate_text(model, "save it", max_steps=2, tool_executors={})
    assert isinstance(missing, Failure)
    assert missing.error.tool_name == "save"

    invalid = await generate_text(model, "x", max_steps=0)
    assert isinstance(invalid.error, ValidationError)


def test_parse_json_output_finds_embedded_value() -> None:
    assert parse_json_output('Sure! {"a": [1, 2]} Hope that helps.') == {"a": [1, 2]}
    assert parse_json_output("Result: [1, 2, 3]") == [1, 2, 3]
    with pytest.raises(ParseError):
        parse_json_output("no json here")
    with pytest.raises(ParseError):
        parse_json_output("{broken")
    with pytest.raises(ParseError):
        parse_json_output("{'single': 'quotes'}")


class City(BaseModel):
    name: str
    population: int


@pytest.mark.anyio
async def test_generate_object_with_pydantic_model() -> None:
    model = FakeLanguageModel(
        "openai", "gpt-4o", script=[text_result('```json\n{"name": "Oslo", "population": 709000}\n```')]
    )
    result = await generate_object(model, City, "Describe Oslo", system="Be factual.")
    assert isinstance(result, Success)
    assert isinstance(result.content, ObjectOutput)
    assert result.content.object == City(name="Oslo", population=709000)
    system = model.calls[0].system
    assert system.startswith("Be factual.\n\nYou must respond with a valid JSON object")
    assert '"population"' in system


@pytest.mark.anyio
async def test_generate_object_with_schema_mapping_and_bad_output() -> None:
    schema = {"type": "object", "properties": {"ok": {"type": "boolean"}}}
    good = FakeLanguageModel("openai", "gpt-4o", script=[text_result('{"ok": true}')])
    result = await generate_object(good, schema, "check")
    assert result.content.object == {"ok": True}
    assert good.calls[0].system.endswith('"properties": {"ok": {"type": "boolean"}}}')

    prose = FakeLanguageModel("openai", "gpt-4o", script=[text_result("I cannot do that.")])
    failed = await generate_object(prose, schema, "check")
    assert isinstance(failed, Failure)
    assert isinstance(failed.error, ParseError)

    wrong_shape = FakeLanguageModel("openai", "gpt-4o", script=[text_result('{"name": "Oslo"}')])
    failed = await generate_object(wrong_shape, City, "Describe Oslo")
    assert isinstance(failed.error, ParseError)
    assert "City" in str(failed.error)

    not_a_schema = await generate_object(good, ["list"], "check")
    assert isinstance(not_a_schema.error, ValidationError)
