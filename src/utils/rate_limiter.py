"""Request rate limiting for outbound API and RPC calls."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable


@dataclass
class RateLimitConfig:
    """Allow ``max_requests`` within any ``time_window`` seconds."""

    max_requests: int
    time_window: float

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.time_window <= 0:
            raise ValueError("time_window must be positive")


class RateLimitExceeded(Exception):
    """Raised by a non-blocking acquire when no slot is free."""

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RateLimiter:
    """
    Sliding window rate limiter, thread-safe.

    Example:
        limiter = RateLimiter(RateLimitConfig(max_requests=5, time_window=1.0))
        limiter.acquire()  # blocks until a slot is free
    """

    def __init__(
        self,
        config: RateLimitConfig,
        time_provider: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self._time_provider = time_provider or time.monotonic
        self._sleep = sleep or time.sleep
        self._timestamps: deque[float] = deque()
        self._lock = Lock()

    def acquire(self, *, blocking: bool = True) -> bool:
        while True:
            with self._lock:
                now = self._time_provider()
                cutoff = now - self.config.time_window
                while self._timestamps and self._timestamps[0] <= cutoff:
                    self._timestamps.popleft()
                if len(self._timestamps) < self.config.max_requests:
                    self._timestamps.append(now)
                    return True
                wait_time = max(
                    0.0, self._timestamps[0] + self.config.time_window - now
                )
            if not blocking:
                raise RateLimitExceeded(
                    f"Rate limit exceeded: {self.config.max_requests} requests "
                    f"per {self.config.time_window}s",
                    retry_after=wait_time,
                )
            self._sleep(wait_time)

    def current_usage(self) -> int:
        with self._lock:
            cutoff = self._time_provider() - self.config.time_window
            return sum(1 for stamp in self._timestamps if stamp > cutoff)
