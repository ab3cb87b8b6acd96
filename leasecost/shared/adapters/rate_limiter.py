"""
Rolling-window rate limiter for Cost Explorer dispatches.

At most ``limit`` acquisitions may start within any ``interval`` seconds.
Finished requests do not return capacity; only the passage of time does.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Deque, Optional, TypeVar

from leasecost.core.logging import component_logger

T = TypeVar("T")


class RateLimiter:
    """
    Sliding-window limiter for async API calls.

    ``clock`` and ``sleep`` are injectable so pacing can be tested without
    real waits.
    """

    def __init__(
        self,
        limit: int,
        interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[Any] = None,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.limit = limit
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._starts: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.logger = component_logger("rate_limiter", logger)

    def _evict_expired(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.interval:
            self._starts.popleft()

    async def acquire(self) -> None:
        """Wait until a dispatch slot is available in the current window."""
        async with self._lock:
            now = self._clock()
            self._evict_expired(now)

            while len(self._starts) >= self.limit:
                wait_time = self._starts[0] + self.interval - now
                if wait_time > 0:
                    self.logger.debug(
                        "rate_limit_waiting",
                        wait_seconds=round(wait_time, 3),
                    )
                    await self._sleep(wait_time)
                now = self._clock()
                self._evict_expired(now)

            self._starts.append(now)

    async def run(
        self,
        coro: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute a coroutine once a slot is granted.

        Usage:
            result = await limiter.run(client.query_grouped_cost, time_range, ...)
        """
        await self.acquire()
        return await coro(*args, **kwargs)
