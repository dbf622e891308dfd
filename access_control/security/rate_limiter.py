"""In-memory fixed window rate limiter implementation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol


class RateLimiter(Protocol):
    """Best-effort request counter consulted before serving a request."""

    def is_allowed(self, key: str) -> bool: ...


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Thread-safe per-key counter that resets once its window has elapsed.

    The counter lives in process memory and is lost on restart. Expired
    windows are swept at most once per window length, so the map only holds
    keys seen within roughly the last two windows.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep: float | None = None
        self._lock = Lock()

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def is_allowed(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        now = self._clock()
        with self._lock:
            if self._next_sweep is None:
                self._next_sweep = now + self._window
            elif now >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = now + self._window

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self._window)
                return True
            if window.count >= self._max_requests:
                return False
            window.count += 1
            return True

    def cleanup(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self._clock()
        with self._lock:
            return self._sweep(now)

    def _sweep(self, now: float) -> int:
        # caller holds the lock
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)
