"""Capability base classes every vendor binding derives from.

Bindings implement ``_do_generate`` (and ``_do_stream`` for native
streaming). The base classes own validation, the cancellation check, retries,
failure classification and logging, so ``generate`` and ``stream`` never raise
for an expected failure.
"""

from __future__ import annotations

import copy
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, ClassVar, Mapping, cast

from ..context import RequestContext
from ..diagnostics import classify_exception, raise_for_response
from ..errors import (
    ApiCallError,
    CancelledError,
    ConfigurationError,
    ModelBridgeError,
    TooManyEmbeddingValuesError,
    ValidationError,
)
from ..logging_utils import get_logger
from ..middleware import MiddlewareChain, MiddlewareContext
from ..resilience import DEFAULT_RETRY_POLICY, RetryExecutor, RetryPolicy
from ..results import Failure, GenerateResult, Success, TextOutput
from ..sse import SseEvent, iter_sse_events
from ..streaming import StreamAccumulator, StreamEvent, StreamPipeline, StreamSink
from ..transport import HttpTransport, combine_headers
from .types import (
    CallOptions,
    Capability,
    EmbeddingCallOptions,
    FinishReason,
    ImageCallOptions,
    LanguageCallOptions,
    ModelDescriptor,
    SpeechCallOptions,
    TranscriptionCallOptions,
)


def _cancelled(context: RequestContext) -> CancelledError:
    if context.is_cancelled():
        return CancelledError("request cancelled")
    return CancelledError("request deadline exceeded", expired=True)


class Model(ABC):
    capability: ClassVar[Capability]
    options_type: ClassVar[type[CallOptions]] = CallOptions

    def __init__(
        self,
        provider: str,
        model_id: str,
        *,
        transport: HttpTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_s: float | None = None,
        headers: Mapping[str, str] | None = None,
        middleware: MiddlewareChain | None = None,
    ) -> None:
        if not model_id:
            raise ValueError("model_id must be non-empty")
        self._descriptor = ModelDescriptor(provider, model_id, self.capability)
        self._transport = transport
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self.timeout_s = timeout_s
        self._headers = dict(headers or {})
        self.middleware = middleware
        self._log = get_logger(f"model.{provider}")

    @property
    def provider(self) -> str:
        return self._descriptor.provider

    @property
    def model_id(self) -> str:
        return self._descriptor.model_id

    @property
    def descriptor(self) -> ModelDescriptor:
        return self._descriptor

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._descriptor})"

    def validate(self, options: CallOptions) -> None:
        """Raise :class:`ValidationError` for malformed options."""

        if not isinstance(options, self.options_type):
            raise ValidationError(
                f"{type(self).__name__} expects {self.options_type.__name__}, "
                f"got {type(options).__name__}"
            )

    @abstractmethod
    async def _do_generate(self, options: Any) -> Any:
        """Issue one vendor request; return the capability output or a ``Success``."""

    def _failure(self, exc: BaseException, attempts: int = 0) -> Failure:
        return Failure(error=exc, diagnostic=classify_exception(exc, provider=self.provider), attempts=attempts)

    def _preflight(
        self, options: CallOptions
    ) -> tuple[CallOptions, MiddlewareContext | None, Failure | None]:
        """Context check, request middleware, then validation.

        Returns the options to send, which are a copy whenever middleware ran,
        the middleware scope (``None`` without a chain) and any early failure.
        """

        context = options.context
        if context is not None and context.is_done():
            return options, None, self._failure(_cancelled(context))
        scope = None
        if self.middleware is not None:
            options = copy.copy(options)
            scope = MiddlewareContext(model=self)
            try:
                self.middleware.process_request(options, scope)
            except ModelBridgeError as exc:
                return options, scope, self._failure(exc)
            if scope.cancelled:
                return options, scope, self._failure(CancelledError("request cancelled by middleware"))
        try:
            self.validate(options)
        except ValidationError as exc:
            return options, scope, self._failure(exc)
        return options, scope, None

    def _executor(self, options: CallOptions, **kwargs: Any) -> RetryExecutor:
        return RetryExecutor(
            options.retry_policy or self.retry_policy,
            context=options.context,
            provider=self.provider,
            **kwargs,
        )

    def _report(self, result: GenerateResult, options: CallOptions, started: float) -> GenerateResult:
        elapsed_ms = (time.monotonic() - started) * 1000.0
        if isinstance(result, Failure):
            if options.diagnostic is not None:
                options.diagnostic.update_from(result.diagnostic)
            self._log.warning(
                "{} call to {} failed after {} attempt(s): {}",
                self.capability.value,
                self.model_id,
                result.attempts,
                result.diagnostic.format(),
            )
        else:
            self._log.debug(
                "{} call to {} succeeded in {:.1f}ms (attempts={})",
                self.capability.value,
                self.model_id,
                elapsed_ms,
                result.attempts,
            )
        return result

    async def generate(self, options: CallOptions) -> GenerateResult:
        started = time.monotonic()
        options, scope, failure = self._preflight(options)
        if failure is not None:
            result: GenerateResult = failure
        else:
            result = await self._executor(options).run_async(lambda: self._do_generate(options))
        if scope is not None and self.middleware is not None:
            result = self.middleware.process_response(result, scope)
        return self._report(result, options, started)

    def _request_timeout(self, options: CallOptions | None) -> float | None:
        """Per-request timeout; ``None`` leaves the choice to the transport."""

        context = options.context if options is not None else None
        remaining = context.remaining() if context is not None else None
        if remaining is None:
            return self.timeout_s
        if self.timeout_s is None:
            return remaining
        return min(self.timeout_s, remaining)

    def _require_transport(self) -> HttpTransport:
        if self._transport is None:
            raise ConfigurationError(f"No HTTP transport configured for provider '{self.provider}'")
        return self._transport

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Mapping[str, str] | None = None,
        *,
        options: CallOptions | None = None,
    ) -> Any:
        transport = self._require_transport()
        response = await transport.post_json(
            url,
            payload,
            combine_headers(self._headers, headers, options.headers if options else None),
            timeout_s=self._request_timeout(options),
        )
        raise_for_response(
            response.status_code,
            response.body,
            provider=self.provider,
            headers=response.headers,
            url=url,
        )
        return response.json()

    async def _post_multipart(
        self,
        url: str,
        data: dict[str, Any],
        files: dict[str, tuple[str, bytes, str]],
        headers: Mapping[str, str] | None = None,
        *,
        options: CallOptions | None = None,
    ) -> Any:
        transport = self._require_transport()
        response = await transport.post_multipart(
            url,
            data,
            files,
            combine_headers(self._headers, headers, options.headers if options else None),
            timeout_s=self._request_timeout(options),
        )
        raise_for_response(
            response.status_code,
            response.body,
            provider=self.provider,
            headers=response.headers,
            url=url,
        )
        return response.json()

    async def _stream_sse(
        self,
        url: str,
        payload: dict[str, Any],
        headers: Mapping[str, str] | None = None,
        *,
        options: CallOptions | None = None,
        max_buffer_size: int | None = None,
    ) -> AsyncIterator[SseEvent]:
        transport = self._require_transport()
        chunks = transport.stream_post(
            url,
            payload,
            combine_headers(self._headers, headers, options.headers if options else None),
            timeout_s=self._request_timeout(options),
        )
        try:
            async for event in iter_sse_events(chunks, max_buffer_size=max_buffer_size):
                yield event
        except ApiCallError as exc:
            if exc.diagnostic.provider is not None:
                raise
            diagnostic = exc.diagnostic.copy()
            diagnostic.provider = self.provider
            raise ApiCallError(diagnostic, url=exc.url) from exc


class LanguageModel(Model):
    capability = Capability.LANGUAGE
    options_type = LanguageCallOptions

    def validate(self, options: CallOptions) -> None:
        super().validate(options)
        options = cast(LanguageCallOptions, options)
        if not options.messages:
            raise ValidationError("messages must contain at least one message")
        if options.max_output_tokens is not None and options.max_output_tokens <= 0:
            raise ValidationError("max_output_tokens must be positive")
        if options.temperature is not None and options.temperature < 0:
            raise ValidationError("temperature must be non-negative")
        if options.top_p is not None and not 0.0 <= options.top_p <= 1.0:
            raise ValidationError("top_p must be within [0, 1]")

    async def _do_stream(self, options: LanguageCallOptions, pipeline: StreamPipeline) -> None:
        """Default streaming: run one generate request and replay it as events."""

        value = await self._do_generate(options)
        result = value if isinstance(value, Success) else Success(content=value)
        output = result.content
        pipeline.emit(StreamEvent.start(result.warnings))
        if isinstance(output, TextOutput):
            if output.text:
                pipeline.text(output.text)
            for call in output.tool_calls:
                pipeline.emit(StreamEvent.tool_call_start(call.tool_call_id, call.tool_name))
                pipeline.emit(StreamEvent.tool_input_delta(call.tool_call_id, call.input))
                pipeline.emit(StreamEvent.tool_call_complete(call.tool_call_id))
            pipeline.finish(output.finish_reason, result.usage)
        else:
            pipeline.finish(FinishReason.STOP, result.usage)

    async def stream(self, options: LanguageCallOptions, sink: StreamSink) -> StreamAccumulator:
        """Stream a response into ``sink``; the returned accumulator holds the full result.

        A failed attempt is retried only while no content event has reached
        the sink. Request middleware runs as for ``generate``; response
        middleware does not, since there is no single result to rewrite.
        """

        started = time.monotonic()
        pipeline = StreamPipeline(sink, context=options.context)
        prepared, _scope, failure = self._preflight(options)
        options = cast(LanguageCallOptions, prepared)
        if failure is None:

            async def attempt() -> None:
                await self._do_stream(options, pipeline)

            result = await self._executor(
                options, retry_guard=lambda: not pipeline.content_emitted
            ).run_async(attempt)
            failure = result if isinstance(result, Failure) else None

        if failure is not None:
            pipeline.fail(failure.error, failure.diagnostic)
            self._report(failure, options, started)
        elif not pipeline.closed:
            pipeline.finish(FinishReason.STOP)

        accumulator = pipeline.accumulator
        if failure is None and accumulator.error is not None:
            # the binding delivered its own error terminal
            diagnostic = accumulator.diagnostic or classify_exception(
                accumulator.error, provider=self.provider
            )
            accumulator.diagnostic = diagnostic
            self._report(Failure(error=accumulator.error, diagnostic=diagnostic), options, started)
        elif failure is None:
            self._log.debug("Stream from {} completed", self.model_id)
        return accumulator


class EmbeddingModel(Model):
    capability = Capability.EMBEDDING
    options_type = EmbeddingCallOptions
    max_embeddings_per_call: int | None = 2048
    supports_parallel_calls: bool = False

    def validate(self, options: CallOptions) -> None:
        super().validate(options)
        options = cast(EmbeddingCallOptions, options)
        if not options.values:
            raise ValidationError("values must contain at least one entry")
        limit = self.max_embeddings_per_call
        if limit is not None and len(options.values) > limit:
            raise TooManyEmbeddingValuesError(
                provider=self.provider,
                model_id=self.model_id,
                max_embeddings_per_call=limit,
                values_count=len(options.values),
            )


class ImageModel(Model):
    capability = Capability.IMAGE
    options_type = ImageCallOptions
    max_images_per_call: int = 1

    def validate(self, options: CallOptions) -> None:
        super().validate(options)
        options = cast(ImageCallOptions, options)
        if not options.prompt:
            raise ValidationError("prompt must be non-empty")
        if options.n < 1:
            raise ValidationError("n must be at least 1")
        if options.n > self.max_images_per_call:
            raise ValidationError(
                f"{self.provider}/{self.model_id} generates at most "
                f"{self.max_images_per_call} image(s) per call, got n={options.n}"
            )
        if options.size is not None and options.aspect_ratio is not None:
            raise ValidationError("size and aspect_ratio are mutually exclusive")


class SpeechModel(Model):
    capability = Capability.SPEECH
    options_type = SpeechCallOptions

    def validate(self, options: CallOptions) -> None:
        super().validate(options)
        options = cast(SpeechCallOptions, options)
        if not options.text:
            raise ValidationError("text must be non-empty")
        if options.speed is not None and options.speed <= 0:
            raise ValidationError("speed must be positive")


class TranscriptionModel(Model):
    capability = Capability.TRANSCRIPTION
    options_type = TranscriptionCallOptions

    def validate(self, options: CallOptions) -> None:
        super().validate(options)
        options = cast(TranscriptionCallOptions, options)
        if not options.audio:
            raise ValidationError("audio must be non-empty")
        if not options.media_type:
            raise ValidationError("media_type is required")
