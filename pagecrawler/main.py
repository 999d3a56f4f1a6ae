import asyncio
import signal
import sys
from typing import Optional

import httpx
from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from pagecrawler.browser.driver import PlaywrightDriver
from pagecrawler.browser.pool import BrowserPool
from pagecrawler.monitoring.metrics_server import start_metrics_server
from pagecrawler.orchestrator import WebsiteCrawler
from pagecrawler.storage.memory_cache import MemoryResultCache
from pagecrawler.storage.redis_cache import RedisResultCache
from pagecrawler.utils.config_loader import build_crawl_options, load_config
from pagecrawler.utils.env_loader import load_environment
from pagecrawler.utils.logger import setup_logger
from pagecrawler.utils.rate_limiter import RateLimiter
from pagecrawler.utils.robots import RobotsHandler


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main(start_url: Optional[str] = None) -> int:
    load_environment()
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    start_url = start_url or config.start_url
    if not start_url:
        logger.error("No start URL given (argument or START_URL).")
        return 2

    options = build_crawl_options(config)
    logger.info("Starting crawler system...")

    # ---- Browser driver ----
    driver = PlaywrightDriver(
        user_agent=config.crawler_user_agent,
        default_timeout_ms=options.timeout_ms,
    )
    await driver.start()

    redis_cache = None
    metrics_runner = None
    loop = asyncio.get_running_loop()
    signals_installed = False

    try:
        # ---- Browser pool ----
        pool = BrowserPool(
            driver,
            max_pool_size=options.concurrency,
            max_pages_per_browser=config.max_pages_per_browser,
            resource_limits=options.resource_limits,
            health_check_interval=config.health_check_interval,
            poll_interval=config.acquire_poll_interval,
            acquire_timeout=config.acquire_timeout,
        )

        # ---- Result cache ----
        if config.redis_url:
            redis_cache = RedisResultCache(config.redis_url, default_ttl=options.cache_ttl)
            await redis_cache.connect()
            cache = redis_cache
        else:
            cache = MemoryResultCache(default_ttl=options.cache_ttl)

        rate_limiter = RateLimiter(config.rate_limit_interval_ms / 1000)

        # ---- Metrics Server ----
        if config.metrics_port:
            metrics_runner, _ = await start_metrics_server(
                port=config.metrics_port,
                status_provider=pool.status,
            )

        shutdown_event = asyncio.Event()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)
        signals_installed = True

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=options.timeout_ms / 1000),
            follow_redirects=True,
        ) as client:
            crawler = WebsiteCrawler(
                pool,
                options=options,
                rate_limiter=rate_limiter,
                robots=RobotsHandler(client, config.crawler_user_agent),
                cache=cache,
            )
            results = await crawler.crawl(start_url, cancel_event=shutdown_event)

        failed = [r for r in results if r.error is not None]
        for result in failed:
            logger.info(f"{result.url}: {result.error.code.value} ({result.error.message})")
        logger.info(
            f"Crawled {len(results) - len(failed)} pages, {len(failed)} failures; "
            f"metrics={crawler.metrics.as_dict()}"
        )
    finally:
        if signals_installed:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)

        if metrics_runner is not None:
            await metrics_runner.shutdown()
            await metrics_runner.cleanup()

        if redis_cache is not None:
            await redis_cache.disconnect()
        await driver.stop()

    return 0


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))


if __name__ == "__main__":
    run()
