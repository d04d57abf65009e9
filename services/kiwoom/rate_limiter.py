import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class RequestScheduler:
    """Process-wide FIFO throttle for outbound Kiwoom REST calls.

    Request starts are spaced at least ``min_interval_ms`` apart and each
    request completes before the next one starts, whatever the caller
    concurrency. ``asyncio.Lock`` wakes waiters in FIFO order.
    """

    def __init__(self, min_interval_ms: int = 333,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.min_interval = min_interval_ms / 1000
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_started: Optional[float] = None

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            if self._last_started is not None:
                wait = self.min_interval - (self._clock() - self._last_started)
                if wait > 0:
                    await self._sleep(wait)
            self._last_started = self._clock()
            return await fn()
