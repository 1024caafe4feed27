"""Caller-facing operations built on the model contract.

Every function takes a model handle plus the capability input, and accepts
the common call fields as keyword arguments: ``headers``,
``provider_options``, ``context``, ``retry_policy`` and ``diagnostic``.
Failures come back as :class:`~modelbridge.results.Failure`; nothing here
raises for an expected failure.
"""

from __future__ import annotations

import inspect
import json
import math
from dataclasses import replace
from typing import Any, Callable, Mapping, Sequence

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .diagnostics import ErrorDiagnostic, classify_exception
from .errors import CancelledError, ModelBridgeError, ParseError, ToolExecutionError, ValidationError
from .logging_utils import get_logger
from .models.base import EmbeddingModel, ImageModel, LanguageModel, SpeechModel, TranscriptionModel
from .models.types import (
    EmbeddingCallOptions,
    EmbeddingOutput,
    ImageCallOptions,
    ImageOutput,
    LanguageCallOptions,
    Message,
    SpeechCallOptions,
    ToolSpec,
    TranscriptionCallOptions,
)
from .results import (
    CallWarning,
    Failure,
    FinishReason,
    GenerateResult,
    ObjectOutput,
    StepResult,
    Success,
    TextOutput,
    ToolCall,
    ToolResult,
    Usage,
)
from .streaming import StreamAccumulator, StreamEvent, StreamPipeline, StreamSink

_LOG = get_logger("api")


def _failed(
    error: BaseException, provider: str, diagnostic: ErrorDiagnostic | None, attempts: int = 0
) -> Failure:
    classified = classify_exception(error, provider=provider)
    if diagnostic is not None:
        diagnostic.update_from(classified)
    return Failure(error=error, diagnostic=classified, attempts=attempts)


def _invalid(message: str, provider: str, diagnostic: ErrorDiagnostic | None) -> Failure:
    return _failed(ValidationError(message), provider, diagnostic)


def _build_messages(
    prompt: str | None, messages: Sequence[Message] | None
) -> tuple[list[Message] | None, str | None]:
    if (prompt is None) == (messages is None):
        return None, "exactly one of prompt or messages is required"
    if prompt is not None:
        if not prompt:
            return None, "prompt must be non-empty"
        return [Message(role="user", content=prompt)], None
    return list(messages or ()), None


def _language_options(
    messages: list[Message],
    *,
    system: str | None,
    max_output_tokens: int | None,
    temperature: float | None,
    top_p: float | None,
    stop_sequences: Sequence[str] | None,
    tools: Sequence[ToolSpec] | None,
    tool_choice: str | None,
    common: dict[str, Any],
) -> LanguageCallOptions:
    return LanguageCallOptions(
        messages=messages,
        system=system,
        max_output_tokens=max_output_tokens,
        temperature=temperature,
        top_p=top_p,
        stop_sequences=list(stop_sequences) if stop_sequences else None,
        tools=list(tools) if tools else None,
        tool_choice=tool_choice,
        **common,
    )


ToolExecutor = Callable[[ToolCall], Any]


def _tool_content(output: Any) -> str:
    return output if isinstance(output, str) else json.dumps(output)


async def _run_tool(call: ToolCall, executors: Mapping[str, ToolExecutor]) -> ToolResult:
    executor = executors.get(call.tool_name)
    if executor is None:
        raise ToolExecutionError(call.tool_name, "no executor registered")
    try:
        output = executor(call)
        if inspect.isawaitable(output):
            output = await output
    except ModelBridgeError:
        raise
    except Exception as exc:
        raise ToolExecutionError(call.tool_name, f"{type(exc).__name__}: {exc}") from exc
    return ToolResult(tool_call_id=call.tool_call_id, tool_name=call.tool_name, output=output)


async def generate_text(
    model: LanguageModel,
    prompt: str | None = None,
    *,
    messages: Sequence[Message] | None = None,
    system: str | None = None,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
    top_p: float | None = None,
    stop_sequences: Sequence[str] | None = None,
    tools: Sequence[ToolSpec] | None = None,
    tool_choice: str | None = None,
    max_steps: int = 1,
    tool_executors: Mapping[str, ToolExecutor] | None = None,
    on_step_finish: Callable[[StepResult], None] | None = None,
    **common: Any,
) -> GenerateResult:
    """Generate text, optionally running tools between model calls.

    While a step finishes with ``tool_calls``, ``max_steps`` allows another
    step and ``tool_executors`` is given, every requested tool is executed in
    order and its output is sent back as a ``tool`` message. The result holds
    the last step's output with every step in ``content.steps``; usage and
    attempts are summed over all steps.
    """

    if max_steps < 1:
        return _invalid("max_steps must be at least 1", model.provider, common.get("diagnostic"))
    built, problem = _build_messages(prompt, messages)
    if built is None:
        return _invalid(problem or "invalid prompt", model.provider, common.get("diagnostic"))
    options = _language_options(
        built,
        system=system,
        max_output_tokens=max_output_tokens,
        temperature=temperature,
        top_p=top_p,
        stop_sequences=stop_sequences,
        tools=tools,
        tool_choice=tool_choice,
        common=common,
    )

    steps: list[StepResult] = []
    usage: Usage | None = None
    attempts = 0
    while True:
        result = await model.generate(options)
        attempts += result.attempts
        if isinstance(result, Failure):
            return replace(result, attempts=attempts)
        output: TextOutput = result.content
        usage = _sum_usage(usage, result.usage)
        wants_tools = (
            tool_executors is not None
            and len(steps) + 1 < max_steps
            and output.finish_reason is FinishReason.TOOL_CALLS
            and bool(output.tool_calls)
        )
        tool_results: tuple[ToolResult, ...] = ()
        if wants_tools:
            try:
                tool_results = tuple([await _run_tool(call, tool_executors) for call in output.tool_calls])
            except ToolExecutionError as exc:
                _LOG.warning("Step {} stopped: {}", len(steps), exc)
                return _failed(exc, model.provider, common.get("diagnostic"), attempts)
        step = StepResult(
            index=len(steps),
            output=output,
            usage=result.usage,
            tool_results=tool_results,
            warnings=result.warnings,
        )
        steps.append(step)
        if on_step_finish is not None:
            on_step_finish(step)
        if not wants_tools:
            break
        _LOG.debug("Step {} ran {} tool(s) for {}", step.index, len(tool_results), model.model_id)
        options = replace(
            options,
            messages=[
                *options.messages,
                Message(role="assistant", content=output.text, tool_calls=output.tool_calls),
                *(
                    Message(role="tool", content=_tool_content(item.output), tool_call_id=item.tool_call_id)
                    for item in tool_results
                ),
            ],
        )
    return replace(result, content=replace(output, steps=tuple(steps)), usage=usage, attempts=attempts)


def _discard(_event: StreamEvent) -> None:
    return None


async def stream_text(
    model: LanguageModel,
    sink: StreamSink | None = None,
    prompt: str | None = None,
    *,
    messages: Sequence[Message] | None = None,
    system: str | None = None,
    max_output_tokens: int | None = None,
    temperature: float | None = None,
    top_p: float | None = None,
    stop_sequences: Sequence[str] | None = None,
    tools: Sequence[ToolSpec] | None = None,
    tool_choice: str | None = None,
    **common: Any,
) -> StreamAccumulator:
    """Stream a response; events go to ``sink`` and the accumulator is returned."""

    sink = sink or _discard
    built, problem = _build_messages(prompt, messages)
    if built is None:
        failure = _invalid(problem or "invalid prompt", model.provider, common.get("diagnostic"))
        pipeline = StreamPipeline(sink)
        pipeline.fail(failure.error, failure.diagnostic)
        return pipeline.accumulator
    options = _language_options(
        built,
        system=system,
        max_output_tokens=max_output_tokens,
        temperature=temperature,
        top_p=top_p,
        stop_sequences=stop_sequences,
        tools=tools,
        tool_choice=tool_choice,
        common=common,
    )
    return await model.stream(options, sink)


OBJECT_INSTRUCTIONS = "You must respond with a valid JSON object matching the following schema:\n"


def parse_json_output(text: str) -> Any:
    """Extract the JSON object (or, failing that, array) embedded in model output."""

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        start, end = text.find("["), text.rfind("]")
    if start == -1 or end < start:
        raise ParseError("No JSON value found in model output", text=text)
    try:
        return json.loads(text[start : end + 1])
    except ValueError as exc:
        raise ParseError(f"Invalid JSON in model output: {exc}", text=text) from exc


async def generate_object(
    model: LanguageModel,
    schema: type[BaseModel] | Mapping[str, Any],
    prompt: str | None = None,
    *,
    messages: Sequence[Message] | None = None,
    system: str | None = None,
    **kwargs: Any,
) -> GenerateResult:
    """Ask for JSON matching ``schema`` and parse the reply.

    ``schema`` is either a JSON schema mapping or a pydantic model class. A
    model class supplies the schema and validates the parsed value, so
    ``content.object`` is an instance of it. Output that is not JSON, or does
    not validate, fails with :class:`ParseError`.
    """

    diagnostic = kwargs.get("diagnostic")
    validator: type[BaseModel] | None = None
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        validator = schema
        json_schema: Any = schema.model_json_schema()
    elif isinstance(schema, Mapping):
        json_schema = dict(schema)
    else:
        return _invalid("schema must be a JSON schema mapping or a pydantic model", model.provider, diagnostic)

    instructions = OBJECT_INSTRUCTIONS + json.dumps(json_schema)
    result = await generate_text(
        model,
        prompt,
        messages=messages,
        system=f"{system}\n\n{instructions}" if system else instructions,
        **kwargs,
    )
    if isinstance(result, Failure):
        return result
    output: TextOutput = result.content
    try:
        value = parse_json_output(output.text)
        if validator is not None:
            value = validator.model_validate(value)
    except ParseError as exc:
        return _failed(exc, model.provider, diagnostic, result.attempts)
    except PydanticValidationError as exc:
        error = ParseError(
            f"Model output does not match {validator.__name__}: {exc.error_count()} error(s)",
            text=output.text,
        )
        return _failed(error, model.provider, diagnostic, result.attempts)
    return replace(
        result,
        content=ObjectOutput(object=value, raw_text=output.text, finish_reason=output.finish_reason),
    )


async def embed(model: EmbeddingModel, value: str, **common: Any) -> GenerateResult:
    """Embed one value; on success ``content`` is the vector itself."""

    if not value:
        return _invalid("value must be non-empty", model.provider, common.get("diagnostic"))
    result = await model.generate(EmbeddingCallOptions(values=[value], **common))
    if isinstance(result, Failure):
        return result
    output: EmbeddingOutput = result.content
    if len(output.embeddings) != 1:
        return _invalid(
            f"expected 1 embedding, got {len(output.embeddings)}",
            model.provider,
            common.get("diagnostic"),
        )
    return replace(result, content=output.embeddings[0])


def _chunks(values: Sequence[Any], size: int | None) -> list[list[Any]]:
    if not size or size <= 0:
        return [list(values)]
    return [list(values[start : start + size]) for start in range(0, len(values), size)]


def _sum_usage(total: Usage | None, usage: Usage | None) -> Usage | None:
    if usage is None:
        return total
    return usage if total is None else total + usage


def _cancelled_failure(provider: str, common: dict[str, Any], attempts: int) -> Failure:
    context = common["context"]
    error = CancelledError(
        "request cancelled" if context.is_cancelled() else "request deadline exceeded",
        expired=not context.is_cancelled(),
    )
    diagnostic = classify_exception(error, provider=provider)
    if common.get("diagnostic") is not None:
        common["diagnostic"].update_from(diagnostic)
    return Failure(error=error, diagnostic=diagnostic, attempts=attempts)


async def embed_many(model: EmbeddingModel, values: Sequence[str], **common: Any) -> GenerateResult:
    """Embed ``values`` in order, splitting by the model's per-call limit.

    Sub-batches run sequentially. Any failing sub-batch fails the whole call
    and no partial embeddings are returned.
    """

    if not values:
        return Success(content=EmbeddingOutput(embeddings=[]), attempts=0)
    if any(not value for value in values):
        return _invalid("values must be non-empty strings", model.provider, common.get("diagnostic"))

    batches = _chunks(values, model.max_embeddings_per_call)
    context = common.get("context")
    embeddings: list[list[float]] = []
    usage: Usage | None = None
    warnings: tuple[CallWarning, ...] = ()
    attempts = 0
    for index, batch in enumerate(batches):
        if context is not None and context.is_done():
            return _cancelled_failure(model.provider, common, attempts)
        result = await model.generate(EmbeddingCallOptions(values=batch, **common))
        attempts += result.attempts
        if isinstance(result, Failure):
            _LOG.warning(
                "Embedding batch {}/{} failed; discarding {} embedding(s)",
                index + 1,
                len(batches),
                len(embeddings),
            )
            return replace(result, attempts=attempts)
        embeddings.extend(result.content.embeddings)
        usage = _sum_usage(usage, result.usage)
        warnings += tuple(w for w in result.warnings if w not in warnings)
    return Success(
        content=EmbeddingOutput(embeddings=embeddings),
        usage=usage,
        warnings=warnings,
        attempts=attempts,
    )


async def generate_image(
    model: ImageModel,
    prompt: str,
    *,
    n: int = 1,
    size: str | None = None,
    aspect_ratio: str | None = None,
    seed: int | None = None,
    **common: Any,
) -> GenerateResult:
    """Generate ``n`` images, issuing as many calls as the model's per-call limit requires."""

    if n < 1:
        return _invalid("n must be at least 1", model.provider, common.get("diagnostic"))
    per_call = max(1, model.max_images_per_call)
    counts = [per_call] * (n // per_call)
    if n % per_call:
        counts.append(n % per_call)

    context = common.get("context")
    images = []
    warnings: tuple[CallWarning, ...] = ()
    attempts = 0
    response = None
    for count in counts:
        if context is not None and context.is_done():
            return _cancelled_failure(model.provider, common, attempts)
        options = ImageCallOptions(
            prompt=prompt, n=count, size=size, aspect_ratio=aspect_ratio, seed=seed, **common
        )
        result = await model.generate(options)
        attempts += result.attempts
        if isinstance(result, Failure):
            return replace(result, attempts=attempts)
        output: ImageOutput = result.content
        images.extend(output.images)
        warnings += tuple(w for w in result.warnings if w not in warnings)
        response = result.response
    return Success(
        content=ImageOutput(images=images),
        warnings=warnings,
        response=response,
        attempts=attempts,
    )


async def generate_speech(
    model: SpeechModel,
    text: str,
    *,
    voice: str | None = None,
    output_format: str | None = None,
    instructions: str | None = None,
    speed: float | None = None,
    language: str | None = None,
    **common: Any,
) -> GenerateResult:
    options = SpeechCallOptions(
        text=text,
        voice=voice,
        output_format=output_format,
        instructions=instructions,
        speed=speed,
        language=language,
        **common,
    )
    return await model.generate(options)


async def transcribe(
    model: TranscriptionModel,
    audio: bytes | str,
    media_type: str,
    **common: Any,
) -> GenerateResult:
    return await model.generate(TranscriptionCallOptions(audio=audio, media_type=media_type, **common))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when undefined."""

    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
