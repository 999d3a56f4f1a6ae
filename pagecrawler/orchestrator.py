from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional, Set

from loguru import logger

from pagecrawler.browser.pool import BrowserPool
from pagecrawler.errors import ErrorCode, InvalidURL, classify_error
from pagecrawler.frontier import Frontier
from pagecrawler.models import CrawlMetrics, PageError, PageMetrics, PageResult, QueueItem
from pagecrawler.monitoring.metrics_server import (
    CACHE_HITS,
    CACHE_MISSES,
    CRAWLED_PAGES,
    FETCH_RETRIES,
    FRONTIER_PENDING,
    PAGE_ERRORS,
    PAGE_LOAD_TIME,
)
from pagecrawler.parsing.html_extractor import absolute_http_links, extract_text, extract_title
from pagecrawler.utils.config_loader import CrawlOptions
from pagecrawler.utils.url_utils import origin_of


START_PRIORITY = 1
LINK_PRIORITY = 1


class WebsiteCrawler:
    """Drive one crawl run: frontier -> robots -> cache -> rate limit -> browser.

    URLs are processed one at a time. Per-page failures end up on
    ``PageResult.error`` and never abort the run.
    """

    def __init__(
        self,
        pool: BrowserPool,
        *,
        options: Optional[CrawlOptions] = None,
        rate_limiter: Any = None,
        robots: Any = None,
        cache: Any = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.options = options or CrawlOptions()
        self.rate_limiter = rate_limiter
        self.robots = robots
        self.cache = cache
        self._clock = clock
        self._sleep = sleep

        self.frontier = Frontier(max_depth=self.options.max_depth)
        self.metrics = CrawlMetrics()
        self._stop_requested = False

    # --------------------------
    #  Shutdown
    # --------------------------
    def stop(self) -> None:
        """Ask the running crawl to finish after the in-flight URL."""
        if not self._stop_requested:
            logger.info("Crawler shutdown requested")
        self._stop_requested = True

    def _should_stop(self, cancel_event: Optional[asyncio.Event]) -> bool:
        return self._stop_requested or (cancel_event is not None and cancel_event.is_set())

    # --------------------------
    #  Main loop
    # --------------------------
    async def crawl(
        self,
        start_url: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[PageResult]:
        started = self._clock()
        self.frontier = Frontier(max_depth=self.options.max_depth)
        self.metrics = CrawlMetrics()
        self._stop_requested = False

        results: List[PageResult] = []
        processed: Set[str] = set()

        logger.info(f"Starting crawl at {start_url} with options {self.options.model_dump()}")

        try:
            await self.pool.start(prewarm=self.options.concurrency)

            if not self.frontier.queue(start_url, 0, START_PRIORITY):
                logger.warning(f"Start URL rejected by frontier: {start_url}")

            if self.options.respect_robots_txt and self.frontier.size():
                await self._load_robots(start_url)

            while not self._should_stop(cancel_event):
                item = self.frontier.dequeue()
                if item is None:
                    break
                FRONTIER_PENDING.set(self.frontier.size())

                if item.url in processed:
                    continue
                processed.add(item.url)

                result = await self.process_item(item)
                results.append(result)

                if result.error is None:
                    CRAWLED_PAGES.inc()
                else:
                    PAGE_ERRORS.labels(code=result.error.code.value).inc()

                if result.depth < self.options.max_depth:
                    discovered = 0
                    for link in result.links:
                        if self.frontier.has_seen(link):
                            continue
                        if self.frontier.queue(link, result.depth + 1, LINK_PRIORITY):
                            discovered += 1
                    if discovered:
                        logger.debug(f"Queued {discovered} new links from {result.url}")

            pending = self.frontier.size()
            if pending and self._should_stop(cancel_event):
                logger.info(f"Crawl stopped; discarding {pending} queued URLs")
                self.frontier.clear()
        finally:
            try:
                await self.pool.shutdown()
            except Exception:
                logger.exception("Browser pool shutdown failed")

            FRONTIER_PENDING.set(self.frontier.size())
            self.metrics.finalize(len(results), (self._clock() - started) * 1000)
            self.metrics.error_count = sum(1 for r in results if r.error is not None)
            self.metrics.total_size_bytes = sum(r.metrics.content_size_bytes for r in results if r.metrics)

            logger.bind(metrics=self.metrics.as_dict()).info(
                f"Crawl completed for {start_url}: {self.metrics.pages_processed} pages, "
                f"{self.metrics.error_count} errors, {self.metrics.total_time_ms:.0f}ms"
            )

        return results

    async def _load_robots(self, start_url: str) -> None:
        if self.robots is None:
            return
        try:
            robots_url = f"{origin_of(self.frontier.normalize(start_url))}/robots.txt"
        except InvalidURL:
            return

        try:
            await self.robots.fetch_and_parse(robots_url)
        except Exception as exc:
            logger.warning(f"robots.txt unavailable at {robots_url}, allowing all: {exc}")

    # --------------------------
    #  Per-URL processing
    # --------------------------
    async def process_item(self, item: QueueItem) -> PageResult:
        if self._is_blocked(item.url):
            logger.debug(f"Skipping URL (robots.txt): {item.url}")
            return PageResult(
                url=item.url,
                depth=item.depth,
                error=PageError(
                    message="URL blocked by robots.txt",
                    code=ErrorCode.ROBOTS_TXT_BLOCKED,
                    retries=0,
                ),
            )

        use_cache = self.options.cache_enabled and self.cache is not None
        if use_cache:
            cached = await self._cache_get(item.url)
            if cached is not None:
                self.metrics.cache_hits += 1
                CACHE_HITS.inc()
                logger.debug(f"Cache hit: {item.url}")
                return replace(cached, depth=item.depth)
            self.metrics.cache_misses += 1
            CACHE_MISSES.inc()

        result = await self._fetch(item)

        if use_cache and result.error is None:
            await self._cache_set(item.url, result)

        return result

    def _is_blocked(self, url: str) -> bool:
        if not self.options.respect_robots_txt or self.robots is None:
            return False
        return not self.robots.is_allowed(url)

    async def _fetch(self, item: QueueItem) -> PageResult:
        await self._wait_for_rate_limit()
        try:
            try:
                page = await self.pool.acquire_page()
            except Exception as exc:
                return self._failed(item, exc, retries=0, code=ErrorCode.BROWSER_ERROR)

            result: Optional[PageResult] = None
            try:
                result = await self._navigate_and_extract(item, page)
            finally:
                close_error = await self._release_page(page)

            if close_error is not None and result.error is None:
                result = PageResult(
                    url=item.url,
                    depth=item.depth,
                    metrics=result.metrics,
                    error=PageError(
                        message="Failed to close page",
                        code=ErrorCode.PAGE_CLOSE_ERROR,
                        retries=0,
                    ),
                )
            return result
        finally:
            if self.rate_limiter is not None:
                self.rate_limiter.release()

    async def _navigate_and_extract(self, item: QueueItem, page: Any) -> PageResult:
        attempt = 0
        while True:
            attempt += 1
            started = self._clock()
            try:
                await page.navigate(item.url, self.options.timeout_ms)
                break
            except Exception as exc:
                if attempt >= self.options.max_retries:
                    return self._failed(item, exc, retries=attempt)
                FETCH_RETRIES.inc()
                logger.warning(
                    f"Page load failed for {item.url}, retrying "
                    f"({attempt}/{self.options.max_retries}): {exc}"
                )
                await self._sleep(self.options.retry_delay_ms / 1000)

        try:
            html = await page.rendered_content()
            content = extract_text(html)
            title = extract_title(html)
        except Exception as exc:
            return self._failed(item, exc, retries=attempt - 1, code=ErrorCode.CONTENT_EXTRACTION_ERROR)

        try:
            links = absolute_http_links(item.url, await page.extract_anchors())
        except Exception as exc:
            return self._failed(item, exc, retries=attempt - 1, code=ErrorCode.LINK_EXTRACTION_ERROR)

        load_time_ms = (self._clock() - started) * 1000
        PAGE_LOAD_TIME.observe(load_time_ms / 1000)
        logger.info(f"Crawled {item.url} (depth={item.depth}, {len(content)} chars, links={len(links)})")

        return PageResult(
            url=item.url,
            depth=item.depth,
            content=content,
            title=title,
            links=links,
            metrics=PageMetrics(
                load_time_ms=load_time_ms,
                content_size_bytes=len(content.encode("utf-8")),
            ),
        )

    def _failed(
        self,
        item: QueueItem,
        exc: BaseException,
        *,
        retries: int,
        code: Optional[ErrorCode] = None,
    ) -> PageResult:
        error_code = code or classify_error(exc)
        message = (str(exc) or exc.__class__.__name__)[:500]
        logger.bind(url=item.url, code=error_code.value, retries=retries).error(
            f"Failed to crawl {item.url} [{error_code.value}] after {retries} attempts: {message}"
        )
        return PageResult(
            url=item.url,
            depth=item.depth,
            error=PageError(message=message, code=error_code, retries=retries),
        )

    async def _release_page(self, page: Any) -> Optional[BaseException]:
        try:
            await self.pool.release_page(page)
        except Exception as exc:
            return exc
        return None

    # --------------------------
    #  Collaborators
    # --------------------------
    async def _wait_for_rate_limit(self) -> None:
        if self.rate_limiter is None:
            return
        try:
            await self.rate_limiter.wait()
        except Exception as exc:
            logger.warning(f"Rate limiter unavailable, continuing without delay: {exc}")

    async def _cache_get(self, url: str) -> Optional[PageResult]:
        try:
            cached = await self.cache.get(url)
            if cached is None:
                return None
            if isinstance(cached, PageResult):
                return cached
            return PageResult.from_dict(cached)
        except Exception as exc:
            logger.warning(f"Cache read failed for {url}, treating as miss: {exc}")
            return None

    async def _cache_set(self, url: str, result: PageResult) -> None:
        try:
            await self.cache.set(url, result.to_dict(), self.options.cache_ttl)
        except Exception as exc:
            logger.warning(f"Cache write failed for {url}: {exc}")
