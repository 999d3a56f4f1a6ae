import inspect
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from loguru import logger

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from pagecrawler.errors import ErrorCode, NavigationError
from pagecrawler.utils.env_loader import load_environment


@pytest.fixture
def anyio_backend():
    """The crawler is built on asyncio; run anyio-marked tests on it."""
    return "asyncio"


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure every test starts from the same crawler environment."""

    # Clear crawler variables so tests only see values they set themselves.
    for key in [
        "START_URL",
        "MAX_DEPTH",
        "MAX_RETRIES",
        "CONCURRENCY",
        "TIMEOUT_MS",
        "REDIS_URL",
        "METRICS_PORT",
        "CRAWLER_USER_AGENT",
        "CRAWLER_CONFIG_PATH",
        "CRAWLER_ENV_FILE",
        "LOG_LEVEL",
    ]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


# -------------------------------------------------------
# Captured log records
# -------------------------------------------------------

@pytest.fixture
def log_records():
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(sink_id)


# -------------------------------------------------------
# Fake browser driver
# -------------------------------------------------------

@dataclass
class FakeSitePage:
    html: str = "<html><body><p>Hello</p></body></html>"
    anchors: List[str] = field(default_factory=list)


class FakePage:
    def __init__(self, driver: "FakeDriver", browser: "FakeBrowser"):
        self.driver = driver
        self.browser = browser
        self.url: Optional[str] = None
        self.close_calls = 0

    async def navigate(self, url: str, timeout_ms: float) -> None:
        self.driver.navigations.append(url)
        if self.driver.on_navigate is not None:
            outcome = self.driver.on_navigate(url)
            if inspect.isawaitable(outcome):
                await outcome
        if self.browser.close_calls:
            raise NavigationError(
                "Target page, context or browser has been closed",
                code=ErrorCode.NETWORK_ERROR,
            )
        failures = self.driver.navigate_failures.get(url)
        if failures:
            raise failures.pop(0)
        self.url = url

    async def rendered_content(self) -> str:
        if self.driver.content_error is not None:
            raise self.driver.content_error
        return self.driver.site.get(self.url, FakeSitePage()).html

    async def extract_anchors(self) -> List[str]:
        if self.driver.anchors_error is not None:
            raise self.driver.anchors_error
        return list(self.driver.site.get(self.url, FakeSitePage()).anchors)

    async def close(self) -> None:
        self.close_calls += 1
        if self.driver.page_close_error is not None:
            raise self.driver.page_close_error


class FakeBrowser:
    def __init__(self, driver: "FakeDriver", index: int):
        self.driver = driver
        self.index = index
        self.probe_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.close_calls = 0
        self.pages: List[FakePage] = []

    async def new_page(self) -> FakePage:
        page = FakePage(self.driver, self)
        self.pages.append(page)
        return page

    async def probe(self) -> str:
        if self.probe_error is not None:
            raise self.probe_error
        return "fake-browser/1.0"

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_calls == 1:
            self.driver.live -= 1
        if self.close_error is not None:
            raise self.close_error


class FakeDriver:
    def __init__(self):
        self.browsers: List[FakeBrowser] = []
        self.launch_error: Optional[Exception] = None
        self.live = 0
        self.max_live = 0

        self.site: Dict[str, FakeSitePage] = {}
        self.navigations: List[str] = []
        self.navigate_failures: Dict[str, List[Exception]] = {}
        self.on_navigate: Optional[Callable[[str], Any]] = None
        self.content_error: Optional[Exception] = None
        self.anchors_error: Optional[Exception] = None
        self.page_close_error: Optional[Exception] = None

    async def launch(self) -> FakeBrowser:
        if self.launch_error is not None:
            raise self.launch_error
        browser = FakeBrowser(self, len(self.browsers))
        self.browsers.append(browser)
        self.live += 1
        self.max_live = max(self.max_live, self.live)
        return browser

    def add_page(self, url: str, html: Optional[str] = None, anchors: Optional[List[str]] = None) -> None:
        page = FakeSitePage(anchors=list(anchors or []))
        if html is not None:
            page.html = html
        self.site[url] = page


@pytest.fixture
def fake_driver():
    return FakeDriver()


# -------------------------------------------------------
# Fake HTTP client (robots.txt)
# -------------------------------------------------------

class MockResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


class MockClient:
    def __init__(self, responses):
        self.responses = responses
        self.calls = 0
        self.urls = []

    async def get(self, url, *_args, **_kwargs):
        self.urls.append(url)
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def robots_client_factory():
    def _factory(*responses):
        return MockClient(list(responses))

    return _factory


@pytest.fixture
def robots_response():
    return MockResponse
