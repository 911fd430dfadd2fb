"""Sliding-window throttling for outbound HTTP requests."""

from __future__ import annotations

import asyncio
from collections import deque


class RequestThrottler:
    """Simple asynchronous rate limiter for external requests."""

    def __init__(self, *, limit: int | None, interval: float = 1.0) -> None:
        if limit is not None and limit <= 0:
            raise ValueError("limit must be positive")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._limit = limit
        self._interval = interval
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int | None:
        return self._limit

    async def acquire(self) -> None:
        """Await until another request can be issued."""

        if self._limit is None:
            return

        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            self._evict(now)

            while len(self._timestamps) >= self._limit:
                sleep_for = self._timestamps[0] + self._interval - now
                if sleep_for <= 0:
                    self._timestamps.popleft()
                    now = loop.time()
                    continue
                await asyncio.sleep(sleep_for)
                now = loop.time()
                self._evict(now)

            self._timestamps.append(loop.time())

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self._interval:
            self._timestamps.popleft()


__all__ = ["RequestThrottler"]
