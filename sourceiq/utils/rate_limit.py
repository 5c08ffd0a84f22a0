from __future__ import annotations

import asyncio
import time


class AsyncRateLimiter:
    """Spaces calls evenly so no more than ``max_per_minute`` start in any minute."""

    def __init__(self, max_per_minute: int, clock=time.monotonic) -> None:
        self.max_per_minute = max(1, max_per_minute)
        self.interval = 60.0 / self.max_per_minute
        self._clock = clock
        self._lock = asyncio.Lock()
        self._next_slot = clock()

    async def wait(self) -> float:
        async with self._lock:
            now = self._clock()
            delay = max(0.0, self._next_slot - now)
            if delay:
                await asyncio.sleep(delay)
            self._next_slot = max(now, self._next_slot) + self.interval
            return delay
