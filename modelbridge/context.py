"""Per-call cancellation, deadline and metadata."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

_ASYNC_POLL_S = 0.05


class RequestContext:
    """Cancellation flag, optional deadline and string metadata for one call.

    ``cancel`` may be called from any thread while the call is running; once
    cancelled the context stays cancelled. Deadlines are absolute values of
    the monotonic clock.
    """

    def __init__(
        self,
        *,
        deadline: float | None = None,
        metadata: dict[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self.deadline = deadline
        self._cancelled = threading.Event()
        self._metadata: dict[str, str] = dict(metadata or {})

    @classmethod
    def with_timeout(cls, timeout_s: float, **kwargs) -> "RequestContext":
        context = cls(**kwargs)
        context.set_timeout(timeout_s)
        return context

    def set_timeout(self, timeout_s: float) -> None:
        if timeout_s < 0:
            raise ValueError("timeout must be non-negative")
        self.deadline = self._clock() + timeout_s

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_expired(self) -> bool:
        if self.deadline is None:
            return False
        return self._clock() >= self.deadline

    def is_done(self) -> bool:
        return self.is_cancelled() or self.is_expired()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def _bounded(self, seconds: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return max(0.0, seconds)
        return max(0.0, min(seconds, remaining))

    def wait(self, seconds: float) -> bool:
        """Block for up to ``seconds``, waking early on cancel.

        Never sleeps past the deadline. Returns ``True`` if the context is
        done when the wait ends.
        """

        if self.is_done():
            return True
        self._cancelled.wait(self._bounded(seconds))
        return self.is_done()

    async def sleep(self, seconds: float) -> bool:
        """Async counterpart of :meth:`wait`; polls the cancel flag."""

        if self.is_done():
            return True
        end = self._clock() + self._bounded(seconds)
        while True:
            left = end - self._clock()
            if left <= 0 or self.is_done():
                break
            await asyncio.sleep(min(left, _ASYNC_POLL_S))
        return self.is_done()

    def set_metadata(self, key: str, value: str) -> None:
        self._metadata[key] = value

    def get_metadata(self, key: str) -> str | None:
        return self._metadata.get(key)

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self._metadata)

    def __repr__(self) -> str:
        return (
            f"RequestContext(cancelled={self.is_cancelled()}, "
            f"deadline={self.deadline!r}, metadata={self._metadata!r})"
        )
