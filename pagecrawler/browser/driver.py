"""Thin adapter over Playwright's async API.

The pool and the crawler only talk to :class:`BrowserHandle` and
:class:`PageHandle`, so tests can swap in fakes with the same methods.
Playwright failures are converted into typed ``CrawlerError`` subclasses here.
"""

from __future__ import annotations

from typing import Any, List, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pagecrawler.errors import (
    BrowserError,
    ContentExtractionError,
    ErrorCode,
    LinkExtractionError,
    NavigationError,
    PageCloseError,
    classify_message,
)


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0 Safari/537.36"
)
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

_ANCHORS_JS = "els => els.map(el => el.href).filter(Boolean)"


class PageHandle:
    """One page living in its own browsing context."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page

    async def navigate(self, url: str, timeout_ms: float) -> None:
        try:
            await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise NavigationError(str(exc), code=ErrorCode.TIMEOUT) from exc
        except PlaywrightError as exc:
            message = str(exc)
            code = classify_message(message)
            if code == ErrorCode.UNKNOWN_ERROR:
                code = ErrorCode.NETWORK_ERROR
            raise NavigationError(message, code=code) from exc

    async def rendered_content(self) -> str:
        try:
            return await self.page.content()
        except PlaywrightError as exc:
            raise ContentExtractionError(f"Content extraction failed: {exc}") from exc

    async def extract_anchors(self) -> List[str]:
        try:
            return await self.page.eval_on_selector_all("a[href]", _ANCHORS_JS)
        except PlaywrightError as exc:
            raise LinkExtractionError(f"Link extraction failed: {exc}") from exc

    async def close(self) -> None:
        # Closing the context also closes the page.
        try:
            await self.context.close()
        except PlaywrightError as exc:
            raise PageCloseError(f"Failed to close page: {exc}") from exc


class BrowserHandle:
    def __init__(
        self,
        browser: Browser,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        default_timeout_ms: Optional[float] = None,
    ):
        self.browser = browser
        self.user_agent = user_agent
        self.default_timeout_ms = default_timeout_ms

    async def new_page(self) -> PageHandle:
        try:
            context = await self.browser.new_context(
                viewport=DEFAULT_VIEWPORT,
                user_agent=self.user_agent,
            )
            page = await context.new_page()
        except PlaywrightError as exc:
            raise BrowserError(f"Browser error: {exc}") from exc

        if self.default_timeout_ms is not None:
            page.set_default_timeout(self.default_timeout_ms)
        return PageHandle(context, page)

    async def probe(self) -> str:
        """Cheap liveness check; raises BrowserError when the browser is gone."""
        if not self.browser.is_connected():
            raise BrowserError("Browser error: disconnected")
        return self.browser.version

    async def close(self) -> None:
        await self.browser.close()


class PlaywrightDriver:
    """Owns the Playwright runtime and launches headless Chromium instances."""

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        default_timeout_ms: Optional[float] = None,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.default_timeout_ms = default_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._manager: Any = None

    async def start(self) -> None:
        if self._playwright is None:
            self._manager = async_playwright()
            self._playwright = await self._manager.start()
            logger.info("Playwright runtime started")

    async def launch(self) -> BrowserHandle:
        if self._playwright is None:
            await self.start()

        try:
            browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
            )
        except PlaywrightError as exc:
            logger.error(f"Failed to launch browser: {exc}")
            raise BrowserError(f"Failed to get browser: {exc}") from exc

        return BrowserHandle(
            browser,
            user_agent=self.user_agent,
            default_timeout_ms=self.default_timeout_ms,
        )

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self._manager = None
            logger.info("Playwright runtime stopped")
