"""
Fixed-window rate limiter.

`limit_for_period` permits are handed out per `refresh_period` seconds. A
caller that finds the window exhausted waits for the next window, up to
`timeout` seconds in total, then gets RateLimitExceededError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable

from docpipe.core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter:

    def __init__(
        self,
        name: str,
        limit_for_period: int = 10,
        refresh_period: float = 1.0,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if limit_for_period < 1:
            raise ValueError("limit_for_period must be >= 1")
        if refresh_period <= 0:
            raise ValueError("refresh_period must be positive")

        self.name = name
        self._limit = limit_for_period
        self._period = refresh_period
        self._timeout = timeout
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

        self._window_start = clock()
        self._used = 0

    def try_acquire(self) -> float:
        """
        Take a permit if one is free in the current window.

        Returns 0.0 on success, otherwise the seconds until the next window.
        """
        with self._lock:
            now = self._clock()
            elapsed = now - self._window_start
            if elapsed >= self._period:
                # Jump to the window containing `now`
                self._window_start = now - (elapsed % self._period)
                self._used = 0

            if self._used < self._limit:
                self._used += 1
                return 0.0
            return self._window_start + self._period - now

    async def acquire(self) -> None:
        deadline = self._clock() + self._timeout

        while True:
            wait = self.try_acquire()
            if wait <= 0:
                return

            remaining = deadline - self._clock()
            if wait > remaining:
                logger.warning(
                    "Rate limit exceeded | name=%s limit=%d/%.1fs timeout=%.1fs",
                    self.name, self._limit, self._period, self._timeout,
                )
                raise RateLimitExceededError(self.name, self._timeout)
            await self._sleep(wait)
