"""In-process politeness limiter: spacing between grants plus a holder cap."""

from __future__ import annotations

import asyncio
import time

from loguru import logger


class RateLimiter:
    def __init__(self, min_interval: float, max_concurrent: int = 1):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.min_interval = min_interval
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._lock = asyncio.Lock()
        self._held = 0
        self._last_grant: float | None = None

    async def wait(self) -> None:
        """Block until a slot is free and ``min_interval`` has passed since the last grant."""
        await self._semaphore.acquire()
        self._held += 1

        async with self._lock:
            if self._last_grant is not None:
                delay = self._last_grant + self.min_interval - time.monotonic()
                if delay > 0:
                    logger.debug(f"Rate limiter sleeping {delay:.3f}s")
                    await asyncio.sleep(delay)
            self._last_grant = time.monotonic()

    def release(self) -> None:
        if self._held == 0:
            return
        self._held -= 1
        self._semaphore.release()

    @property
    def held(self) -> int:
        return self._held
