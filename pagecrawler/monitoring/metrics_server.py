from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Page Metrics
# -------------------------

CRAWLED_PAGES = Counter(
    "pagecrawler_pages_crawled_total",
    "Pages fetched and extracted successfully",
)

PAGE_ERRORS = Counter(
    "pagecrawler_page_errors_total",
    "Pages that ended with a terminal error",
    ["code"],
)

FETCH_RETRIES = Counter(
    "pagecrawler_fetch_retries_total",
    "Navigation attempts that were retried",
)

PAGE_LOAD_TIME = Histogram(
    "pagecrawler_page_load_seconds",
    "Time to navigate and extract a page (final attempt)",
)

# -------------------------
# Cache Metrics
# -------------------------

CACHE_HITS = Counter(
    "pagecrawler_cache_hits_total",
    "Result cache hits",
)

CACHE_MISSES = Counter(
    "pagecrawler_cache_misses_total",
    "Result cache misses",
)

# -------------------------
# Pool / Frontier Metrics
# -------------------------

LIVE_BROWSERS = Gauge(
    "pagecrawler_live_browsers",
    "Browser slots currently in the pool",
)

RECYCLED_BROWSERS = Counter(
    "pagecrawler_recycled_browsers_total",
    "Browser slots removed from the pool",
    ["reason"],
)

FRONTIER_PENDING = Gauge(
    "pagecrawler_frontier_pending",
    "Number of URLs waiting in the frontier",
)


# -------------------------
# HTTP endpoints
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a content_type that carries a charset
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


STATUS_KEY = web.AppKey("status_provider", object)


async def health_handler(request):
    provider = request.app.get(STATUS_KEY)
    status = provider() if provider is not None else {}
    return web.json_response({"status": "ok", **status})


async def start_metrics_server(port=8000, host="0.0.0.0", status_provider=None):
    """Serve /metrics and /health; ``status_provider`` returns extra fields for /health."""
    app = web.Application()
    app[STATUS_KEY] = status_provider
    app.router.add_get("/metrics", metrics_handler)
    app.router.add_get("/health", health_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    return runner, site
