"""Retry policy and the centralized retry executor."""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from .context import RequestContext
from .diagnostics import ErrorDiagnostic, ErrorKind, classify_exception
from .errors import (
    CancelledError,
    ConfigurationError,
    NoSuchModelError,
    ParseError,
    ResourceExhaustedError,
    UnsupportedFunctionalityError,
    ValidationError,
)
from .logging_utils import get_logger
from .results import Failure, GenerateResult, Success

T = TypeVar("T")

_LOG = get_logger("retry")

# Failures that describe the request itself; repeating it cannot help.
_NEVER_RETRIED = (
    CancelledError,
    ValidationError,
    ParseError,
    ConfigurationError,
    NoSuchModelError,
    UnsupportedFunctionalityError,
)
_FATAL = (ResourceExhaustedError, MemoryError)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    backoff_multiplier: float = 2.0
    # Fraction of each delay that may be randomly shaved off; 0 disables jitter.
    jitter: float = 0.5
    retry_on_rate_limit: bool = True
    retry_on_server_error: bool = True
    retry_on_timeout: bool = True
    retry_on_network: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(max_retries=0)

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        return cls(max_retries=5, initial_delay_s=2.0, max_delay_s=60.0, backoff_multiplier=3.0)

    def allows(self, diagnostic: ErrorDiagnostic) -> bool:
        """Whether the policy's category switches permit retrying this failure."""

        if not diagnostic.is_retryable:
            return False
        if diagnostic.status_code == 408:
            return self.retry_on_timeout
        if diagnostic.kind is ErrorKind.RATE_LIMIT:
            return self.retry_on_rate_limit
        if diagnostic.kind is ErrorKind.SERVER:
            return self.retry_on_server_error
        if diagnostic.kind is ErrorKind.NETWORK:
            return self.retry_on_network
        return True

    def should_retry(self, attempt: int, diagnostic: ErrorDiagnostic) -> bool:
        """``attempt`` counts retries already used, starting at 0."""

        if attempt >= self.max_retries:
            return False
        return self.allows(diagnostic)


DEFAULT_RETRY_POLICY = RetryPolicy()


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    *,
    retry_after_s: float | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    base = policy.initial_delay_s * (policy.backoff_multiplier**attempt)
    if policy.jitter:
        base *= 1.0 - policy.jitter * rand()
    if retry_after_s is not None:
        base = max(base, retry_after_s)
    return max(0.0, min(base, policy.max_delay_s))


def _as_success(value: Any, attempts: int) -> Success[Any]:
    if isinstance(value, Success):
        return replace(value, attempts=attempts)
    return Success(content=value, attempts=attempts)


class RetryExecutor:
    """Run an operation, retrying classified-retryable failures.

    Failures come back as :class:`Failure` values; only resource exhaustion
    escapes as an exception.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        context: RequestContext | None = None,
        provider: str | None = None,
        retry_guard: Callable[[], bool] | None = None,
    ) -> None:
        self.policy = policy or DEFAULT_RETRY_POLICY
        self.context = context
        self.provider = provider
        self._retry_guard = retry_guard

    def _cancelled(self, attempts: int, last: Failure | None = None) -> Failure:
        expired = self.context is not None and not self.context.is_cancelled()
        error = CancelledError(
            "request deadline exceeded" if expired else "request cancelled",
            expired=expired,
        )
        diagnostic = classify_exception(error, provider=self.provider)
        if last is not None:
            diagnostic.extra["last_error"] = last.diagnostic.format()
        return Failure(error=error, diagnostic=diagnostic, attempts=attempts)

    def _done(self) -> bool:
        return self.context is not None and self.context.is_done()

    def _next_delay(self, attempt: int, exc: Exception, attempts: int) -> tuple[float | None, Failure]:
        diagnostic = classify_exception(exc, provider=self.provider)
        failure = Failure(error=exc, diagnostic=diagnostic, attempts=attempts)
        if isinstance(exc, _NEVER_RETRIED):
            return None, failure
        if not self.policy.should_retry(attempt, diagnostic):
            return None, failure
        if self._retry_guard is not None and not self._retry_guard():
            return None, failure
        delay = compute_delay(self.policy, attempt, retry_after_s=diagnostic.retry_after_s)
        _LOG.warning(
            "Attempt {} failed ({}); retrying in {:.2f}s",
            attempts,
            diagnostic.format(),
            delay,
        )
        return delay, failure

    def run(self, operation: Callable[[], T]) -> GenerateResult:
        attempt = 0
        attempts = 0
        last: Failure | None = None
        while True:
            if self._done():
                return self._cancelled(attempts, last)
            attempts += 1
            try:
                value = operation()
            except _FATAL:
                raise
            except Exception as exc:
                delay, last = self._next_delay(attempt, exc, attempts)
                if delay is None:
                    return last
                if self.context is not None:
                    if self.context.wait(delay):
                        return self._cancelled(attempts, last)
                else:
                    time.sleep(delay)
                attempt += 1
                continue
            return _as_success(value, attempts)

    async def run_async(self, operation: Callable[[], Awaitable[T]]) -> GenerateResult:
        attempt = 0
        attempts = 0
        last: Failure | None = None
        while True:
            if self._done():
                return self._cancelled(attempts, last)
            attempts += 1
            try:
                value = await operation()
            except _FATAL:
                raise
            except Exception as exc:
                delay, last = self._next_delay(attempt, exc, attempts)
                if delay is None:
                    return last
                if self.context is not None:
                    if await self.context.sleep(delay):
                        return self._cancelled(attempts, last)
                else:
                    await asyncio.sleep(delay)
                attempt += 1
                continue
            return _as_success(value, attempts)


def retry_sync(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy | None = None,
    context: RequestContext | None = None,
    provider: str | None = None,
) -> GenerateResult:
    return RetryExecutor(policy, context=context, provider=provider).run(fn)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    context: RequestContext | None = None,
    provider: str | None = None,
) -> GenerateResult:
    return await RetryExecutor(policy, context=context, provider=provider).run_async(fn)
