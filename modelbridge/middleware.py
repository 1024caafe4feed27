"""Request/response middleware applied around a model's vendor call.

Request middleware runs in registration order on a private copy of the call
options, before validation. Response middleware runs in reverse order on the
final result, success or failure. A request middleware may stop the chain by
setting ``context.cancelled`` or by raising a :class:`ModelBridgeError`;
either way the call fails without reaching the vendor.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from .errors import RateLimitExceededError
from .logging_utils import get_logger
from .models.types import CallOptions, LanguageCallOptions
from .results import Failure, GenerateResult, TextOutput

if TYPE_CHECKING:
    from .models.base import Model


@dataclass
class MiddlewareContext:
    model: "Model | None" = None
    cancelled: bool = False
    data: dict[str, Any] = field(default_factory=dict)


RequestMiddleware = Callable[[CallOptions, MiddlewareContext], None]
ResponseMiddleware = Callable[[GenerateResult, MiddlewareContext], GenerateResult]


class MiddlewareChain:
    def __init__(self) -> None:
        self._request: list[RequestMiddleware] = []
        self._response: list[ResponseMiddleware] = []

    def __len__(self) -> int:
        return len(self._request) + len(self._response)

    def use_request(self, middleware: RequestMiddleware) -> "MiddlewareChain":
        self._request.append(middleware)
        return self

    def use_response(self, middleware: ResponseMiddleware) -> "MiddlewareChain":
        self._response.append(middleware)
        return self

    def use(self, middleware: Any) -> "MiddlewareChain":
        """Register an object's ``process_request``/``process_response`` hooks."""

        process_request = getattr(middleware, "process_request", None)
        process_response = getattr(middleware, "process_response", None)
        if process_request is None and process_response is None:
            raise TypeError(f"{type(middleware).__name__} defines no middleware hooks")
        if process_request is not None:
            self.use_request(process_request)
        if process_response is not None:
            self.use_response(process_response)
        return self

    def process_request(self, options: CallOptions, context: MiddlewareContext) -> None:
        for middleware in self._request:
            middleware(options, context)
            if context.cancelled:
                break

    def process_response(self, result: GenerateResult, context: MiddlewareContext) -> GenerateResult:
        for middleware in reversed(self._response):
            result = middleware(result, context)
        return result


class DefaultSettingsMiddleware:
    """Fill option fields the caller left as ``None``.

    Fields the options type does not have are skipped, so one instance can
    serve models of different capabilities.
    """

    def __init__(self, defaults: Mapping[str, Any]) -> None:
        self.defaults = dict(defaults)

    def process_request(self, options: CallOptions, context: MiddlewareContext) -> None:
        for name, value in self.defaults.items():
            if getattr(options, name, value) is None:
                setattr(options, name, value)


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class LoggingMiddleware:
    def __init__(self, *, level: str = "DEBUG", preview_chars: int = 200) -> None:
        self.level = level
        self.preview_chars = preview_chars
        self._log = get_logger("middleware")

    def process_request(self, options: CallOptions, context: MiddlewareContext) -> None:
        model = context.model.descriptor if context.model is not None else "model"
        if isinstance(options, LanguageCallOptions) and options.messages:
            prompt = _preview(options.messages[-1].content, self.preview_chars)
            self._log.log(self.level, "Request to {}: {}", model, prompt)
        else:
            self._log.log(self.level, "Request to {} ({})", model, type(options).__name__)

    def process_response(self, result: GenerateResult, context: MiddlewareContext) -> GenerateResult:
        model = context.model.descriptor if context.model is not None else "model"
        if isinstance(result, Failure):
            self._log.log(self.level, "Response from {} failed: {}", model, result.message)
        elif isinstance(result.content, TextOutput):
            self._log.log(
                self.level,
                "Response from {} ({}): {}",
                model,
                result.content.finish_reason.value,
                _preview(result.content.text, self.preview_chars),
            )
        else:
            self._log.log(self.level, "Response from {}: {}", model, type(result.content).__name__)
        return result


class RateLimitMiddleware:
    """Fixed-window client-side limit on requests per minute."""

    window_s = 60.0

    def __init__(self, requests_per_minute: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.requests_per_minute = requests_per_minute
        self._clock = clock
        self._lock = threading.Lock()
        self.window_start: float | None = None
        self.request_count = 0

    def process_request(self, options: CallOptions, context: MiddlewareContext) -> None:
        with self._lock:
            now = self._clock()
            if self.window_start is None or now - self.window_start >= self.window_s:
                self.window_start = now
                self.request_count = 0
            if self.request_count >= self.requests_per_minute:
                context.cancelled = True
                raise RateLimitExceededError(
                    f"client limit of {self.requests_per_minute} requests per minute reached",
                    retry_after_s=max(0.0, self.window_start + self.window_s - now),
                )
            self.request_count += 1
