from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    # Seconds until the caller's window expires (0 when no window is open).
    retry_after: int


@dataclass
class _Window:
    expires_at: float
    attempts: int


class AttemptLimiter:
    """
    Per-key attempt counter whose window opens on the first attempt.

    ``max_attempts`` attempts are allowed per ``decay_seconds`` window; the
    window for a key starts with its first attempt, not on a clock boundary.
    State lives in this process only.
    """

    def __init__(
        self, *, max_attempts: int, decay_seconds: int, clock: Callable[[], float] = time.time
    ) -> None:
        self.max_attempts = int(max_attempts)
        self.decay_seconds = int(decay_seconds)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._windows: dict[str, _Window] = {}

    def _open_window(self, key: str, now: float) -> _Window | None:
        window = self._windows.get(key)
        if window is not None and window.expires_at <= now:
            del self._windows[key]
            return None
        return window

    async def attempt(self, key: str) -> RateLimitResult:
        now = self._clock()
        async with self._lock:
            window = self._open_window(key, now)
            if window is None:
                window = _Window(expires_at=now + self.decay_seconds, attempts=0)
                self._windows[key] = window
            retry_after = max(0, math.ceil(window.expires_at - now))
            if window.attempts >= self.max_attempts:
                return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)
            window.attempts += 1
            return RateLimitResult(
                allowed=True, remaining=self.max_attempts - window.attempts, retry_after=retry_after
            )

    async def clear(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)
