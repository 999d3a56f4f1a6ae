from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from pagecrawler.errors import BrowserError, PageCloseError, PoolExhaustedError
from pagecrawler.monitoring.metrics_server import LIVE_BROWSERS, RECYCLED_BROWSERS
from pagecrawler.utils.config_loader import ResourceLimits


MAX_PAGES_PER_BROWSER = 5
MAX_CONSECUTIVE_FAILURES = 3
PER_PAGE_MEMORY_MB = 100
PER_PAGE_CPU_PERCENT = 10


@dataclass
class BrowserSlot:
    id: str
    browser: Any
    pages: List[Any] = field(default_factory=list)
    last_used_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error_count: int = 0
    memory_mb: float = 0.0
    cpu_percent: float = 0.0
    is_healthy: bool = True


class BrowserPool:
    """Bounded pool of browsers, each hosting a handful of pages.

    ``driver`` only needs an async ``launch()`` returning a handle with
    ``new_page()``, ``probe()`` and ``close()``. Every mutation of the slot map
    happens under one asyncio lock, shared by callers and the health-check task.

    ``acquire_page()`` polls every ``poll_interval`` seconds while the pool is
    saturated. With ``acquire_timeout=None`` that wait is unbounded.
    """

    def __init__(
        self,
        driver: Any,
        *,
        max_pool_size: int = 5,
        max_pages_per_browser: int = MAX_PAGES_PER_BROWSER,
        resource_limits: Optional[ResourceLimits] = None,
        health_check_interval: float = 30.0,
        poll_interval: float = 1.0,
        acquire_timeout: Optional[float] = None,
    ):
        if max_pool_size < 1:
            raise ValueError("max_pool_size must be >= 1")

        self.driver = driver
        self.max_pool_size = max_pool_size
        self.max_pages_per_browser = max_pages_per_browser
        self.resource_limits = resource_limits or ResourceLimits()
        self.health_check_interval = health_check_interval
        self.poll_interval = poll_interval
        self.acquire_timeout = acquire_timeout

        self._slots: Dict[str, BrowserSlot] = {}
        self._lock = asyncio.Lock()
        self._health_task: Optional[asyncio.Task] = None
        self._closed = False

    # -------------------------------------------------------
    # Introspection
    # -------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> List[BrowserSlot]:
        return list(self._slots.values())

    def status(self) -> Dict[str, Any]:
        slots = list(self._slots.values())
        return {
            "browsers": len(slots),
            "healthy_browsers": sum(1 for s in slots if s.is_healthy),
            "open_pages": sum(len(s.pages) for s in slots),
            "max_pool_size": self.max_pool_size,
            "closed": self._closed,
        }

    # -------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------

    async def start(self, prewarm: int = 0) -> None:
        self._closed = False
        if prewarm:
            await self.warm_up(prewarm)

        await self.run_health_check()

        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())

    async def warm_up(self, count: int) -> int:
        target = min(count, self.max_pool_size)
        async with self._lock:
            while len(self._slots) < target:
                try:
                    await self._launch_slot_locked()
                except BrowserError as exc:
                    logger.error(f"Pool warm-up stopped at {len(self._slots)} browsers: {exc}")
                    break
        logger.bind(browsers=len(self._slots), max_pool_size=self.max_pool_size).info(
            f"Browser pool initialized with {len(self._slots)} browsers (max={self.max_pool_size})"
        )
        return len(self._slots)

    async def shutdown(self) -> None:
        self._closed = True

        if self._health_task is not None:
            self._health_task.cancel()
            await asyncio.gather(self._health_task, return_exceptions=True)
            self._health_task = None

        async with self._lock:
            slots = list(self._slots.values())
            self._slots.clear()

        results = await asyncio.gather(
            *(slot.browser.close() for slot in slots),
            return_exceptions=True,
        )
        for slot, result in zip(slots, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to close browser {slot.id}: {result}")

        LIVE_BROWSERS.set(0)
        logger.info(f"Browser pool shut down ({len(slots)} browsers closed)")

    # -------------------------------------------------------
    # Pages
    # -------------------------------------------------------

    async def acquire_page(self) -> Any:
        deadline = None
        if self.acquire_timeout is not None:
            deadline = time.monotonic() + self.acquire_timeout
        waiting = False

        while True:
            async with self._lock:
                if self._closed:
                    raise BrowserError("Browser error: pool is shut down")
                page = await self._try_acquire_locked()
            if page is not None:
                return page

            if not waiting:
                logger.debug(f"Browser pool saturated ({len(self._slots)} browsers); waiting for capacity")
                waiting = True

            if deadline is not None and time.monotonic() >= deadline:
                raise PoolExhaustedError(
                    f"Failed to get browser: no capacity after {self.acquire_timeout}s"
                )
            await asyncio.sleep(self.poll_interval)

    async def release_page(self, page: Any) -> None:
        async with self._lock:
            for slot in self._slots.values():
                if page in slot.pages:
                    slot.pages.remove(page)
                    break

        try:
            await page.close()
        except PageCloseError as exc:
            logger.error(f"Error closing page: {exc}")
            raise
        except Exception as exc:
            logger.error(f"Error closing page: {exc}")
            raise PageCloseError(f"Failed to close page: {exc}") from exc

    async def _try_acquire_locked(self) -> Optional[Any]:
        for slot in self._slots.values():
            if slot.is_healthy and len(slot.pages) < self.max_pages_per_browser:
                return await self._open_page(slot)

        if len(self._slots) < self.max_pool_size:
            slot = await self._launch_slot_locked()
            return await self._open_page(slot)

        return None

    async def _open_page(self, slot: BrowserSlot) -> Any:
        try:
            page = await slot.browser.new_page()
        except BrowserError:
            raise
        except Exception as exc:
            raise BrowserError(f"Browser error: could not open page in {slot.id}: {exc}") from exc

        slot.pages.append(page)
        slot.last_used_at = datetime.now(timezone.utc)
        return page

    async def _launch_slot_locked(self) -> BrowserSlot:
        try:
            browser = await self.driver.launch()
        except BrowserError:
            raise
        except Exception as exc:
            raise BrowserError(f"Failed to get browser: {exc}") from exc

        slot = BrowserSlot(id=uuid.uuid4().hex[:8], browser=browser)
        self._slots[slot.id] = slot
        LIVE_BROWSERS.set(len(self._slots))
        logger.debug(f"Launched browser {slot.id} ({len(self._slots)}/{self.max_pool_size})")
        return slot

    # -------------------------------------------------------
    # Health checks
    # -------------------------------------------------------

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.run_health_check()
            except Exception:
                logger.exception("Browser pool health check crashed")

    async def run_health_check(self) -> None:
        async with self._lock:
            for slot_id, slot in list(self._slots.items()):
                try:
                    await slot.browser.probe()
                except Exception as exc:
                    slot.is_healthy = False
                    slot.error_count += 1
                    logger.warning(
                        f"Browser {slot_id} failed health check "
                        f"({slot.error_count}/{MAX_CONSECUTIVE_FAILURES}): {exc}"
                    )
                    if slot.error_count >= MAX_CONSECUTIVE_FAILURES:
                        await self._remove_slot_locked(slot_id, reason="unhealthy")
                    continue

                slot.is_healthy = True
                slot.error_count = 0
                self._update_resource_usage(slot)

                if self._exceeds_limits(slot):
                    logger.warning(
                        f"Recycling browser {slot_id} due to high resource usage "
                        f"({slot.memory_mb:.0f}MB, {slot.cpu_percent:.0f}% CPU)"
                    )
                    await self._remove_slot_locked(slot_id, reason="resources")

    @staticmethod
    def _update_resource_usage(slot: BrowserSlot) -> None:
        # Rough per-page estimates, not measured process stats.
        open_pages = len(slot.pages)
        slot.memory_mb = open_pages * PER_PAGE_MEMORY_MB
        slot.cpu_percent = open_pages * PER_PAGE_CPU_PERCENT

    def _exceeds_limits(self, slot: BrowserSlot) -> bool:
        return (
            slot.memory_mb > self.resource_limits.max_memory_mb
            or slot.cpu_percent > self.resource_limits.max_cpu_percent
        )

    # -------------------------------------------------------
    # Removal
    # -------------------------------------------------------

    async def remove_slot(self, slot_id: str) -> bool:
        async with self._lock:
            return await self._remove_slot_locked(slot_id, reason="manual")

    async def _remove_slot_locked(self, slot_id: str, *, reason: str) -> bool:
        slot = self._slots.get(slot_id)
        if slot is None:
            return False

        for page in list(slot.pages):
            try:
                await page.close()
            except Exception as exc:
                logger.error(f"Failed to close page context in browser {slot_id}: {exc}")
        slot.pages.clear()

        try:
            await slot.browser.close()
        except Exception as exc:
            logger.error(f"Failed to close browser {slot_id}: {exc}")

        del self._slots[slot_id]
        RECYCLED_BROWSERS.labels(reason=reason).inc()
        LIVE_BROWSERS.set(len(self._slots))
        logger.bind(slot_id=slot_id, reason=reason).info(f"Removed browser {slot_id} from pool ({reason})")
        return True
