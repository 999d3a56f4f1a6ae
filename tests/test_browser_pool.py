import asyncio

import pytest

from pagecrawler.browser.pool import BrowserPool
from pagecrawler.errors import BrowserError, PageCloseError, PoolExhaustedError
from pagecrawler.utils.config_loader import ResourceLimits


@pytest.mark.anyio
async def test_acquire_reuses_browser_until_page_limit(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=2, max_pages_per_browser=5)

    pages = [await pool.acquire_page() for _ in range(6)]

    assert len(fake_driver.browsers) == 2
    assert [len(slot.pages) for slot in pool.slots] == [5, 1]
    assert pages[0].browser is fake_driver.browsers[0]
    assert pages[5].browser is fake_driver.browsers[1]


@pytest.mark.anyio
async def test_concurrent_acquires_never_exceed_pool_size(fake_driver):
    pool = BrowserPool(
        fake_driver,
        max_pool_size=2,
        max_pages_per_browser=1,
        poll_interval=0.01,
    )
    held = []
    max_held = 0

    async def worker():
        nonlocal max_held
        page = await pool.acquire_page()
        held.append(page)
        max_held = max(max_held, len(held))
        assert pool.size <= 2
        await asyncio.sleep(0.02)
        held.remove(page)
        await pool.release_page(page)

    await asyncio.gather(*(worker() for _ in range(6)))

    assert fake_driver.max_live <= 2
    assert len(fake_driver.browsers) == 2
    assert max_held <= 2


@pytest.mark.anyio
async def test_acquire_timeout_raises_pool_exhausted(fake_driver):
    pool = BrowserPool(
        fake_driver,
        max_pool_size=1,
        max_pages_per_browser=1,
        poll_interval=0.01,
        acquire_timeout=0.05,
    )
    await pool.acquire_page()

    with pytest.raises(PoolExhaustedError):
        await pool.acquire_page()


@pytest.mark.anyio
async def test_launch_failure_surfaces_as_browser_error(fake_driver):
    fake_driver.launch_error = RuntimeError("chromium missing")
    pool = BrowserPool(fake_driver, max_pool_size=1)

    with pytest.raises(BrowserError):
        await pool.acquire_page()


@pytest.mark.anyio
async def test_release_closes_page_and_frees_capacity(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1, max_pages_per_browser=1)
    page = await pool.acquire_page()

    await pool.release_page(page)

    assert page.close_calls == 1
    assert pool.slots[0].pages == []
    second = await pool.acquire_page()
    assert second.browser is page.browser


@pytest.mark.anyio
async def test_release_of_untracked_page_closes_it_directly(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1)
    stray = await (await fake_driver.launch()).new_page()

    await pool.release_page(stray)

    assert stray.close_calls == 1


@pytest.mark.anyio
async def test_release_close_failure_raises_page_close_error(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1)
    page = await pool.acquire_page()
    fake_driver.page_close_error = RuntimeError("context gone")

    with pytest.raises(PageCloseError):
        await pool.release_page(page)
    assert pool.slots[0].pages == []


@pytest.mark.anyio
async def test_three_failed_probes_remove_slot_and_close_browser_once(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=2)
    await pool.warm_up(1)
    browser = fake_driver.browsers[0]
    browser.probe_error = BrowserError("Browser error: disconnected")

    await pool.run_health_check()
    assert pool.size == 1
    assert pool.slots[0].is_healthy is False
    assert pool.slots[0].error_count == 1

    await pool.run_health_check()
    assert pool.slots[0].error_count == 2

    await pool.run_health_check()
    assert pool.size == 0
    assert browser.close_calls == 1

    await pool.run_health_check()
    assert browser.close_calls == 1


@pytest.mark.anyio
async def test_successful_probe_resets_error_count(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1)
    await pool.warm_up(1)
    browser = fake_driver.browsers[0]

    browser.probe_error = BrowserError("flaky")
    await pool.run_health_check()
    await pool.run_health_check()
    browser.probe_error = None
    await pool.run_health_check()

    slot = pool.slots[0]
    assert slot.is_healthy is True
    assert slot.error_count == 0


@pytest.mark.anyio
async def test_unhealthy_slot_is_skipped_by_acquire(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=2)
    await pool.warm_up(1)
    fake_driver.browsers[0].probe_error = BrowserError("flaky")
    await pool.run_health_check()

    page = await pool.acquire_page()

    assert page.browser is fake_driver.browsers[1]


@pytest.mark.anyio
async def test_resource_heavy_slot_is_recycled(fake_driver):
    pool = BrowserPool(
        fake_driver,
        max_pool_size=1,
        resource_limits=ResourceLimits(max_memory_mb=250, max_cpu_percent=80),
    )
    pages = [await pool.acquire_page() for _ in range(3)]
    browser = fake_driver.browsers[0]

    await pool.run_health_check()

    assert pool.size == 0
    assert browser.close_calls == 1
    assert all(page.close_calls == 1 for page in pages)


@pytest.mark.anyio
async def test_health_check_records_resource_estimates(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1)
    await pool.acquire_page()
    await pool.acquire_page()

    await pool.run_health_check()

    slot = pool.slots[0]
    assert slot.memory_mb == 200
    assert slot.cpu_percent == 20


@pytest.mark.anyio
async def test_remove_slot_continues_when_page_close_fails(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=1)
    await pool.acquire_page()
    slot_id = pool.slots[0].id
    fake_driver.page_close_error = RuntimeError("already closed")

    assert await pool.remove_slot(slot_id) is True

    assert pool.size == 0
    assert fake_driver.browsers[0].close_calls == 1
    assert await pool.remove_slot(slot_id) is False


@pytest.mark.anyio
async def test_shutdown_closes_every_browser_despite_failures(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=3, health_check_interval=3600)
    await pool.start(prewarm=3)
    fake_driver.browsers[0].close_error = RuntimeError("crashed")

    await pool.shutdown()

    assert pool.size == 0
    assert [b.close_calls for b in fake_driver.browsers] == [1, 1, 1]
    with pytest.raises(BrowserError):
        await pool.acquire_page()


@pytest.mark.anyio
async def test_start_prewarms_and_runs_eager_health_check(fake_driver):
    pool = BrowserPool(fake_driver, max_pool_size=2, health_check_interval=3600)

    await pool.start(prewarm=5)
    try:
        assert pool.size == 2
        assert all(slot.is_healthy for slot in pool.slots)
    finally:
        await pool.shutdown()


@pytest.mark.anyio
async def test_pool_transitions_carry_structured_metadata(fake_driver, log_records):
    pool = BrowserPool(fake_driver, max_pool_size=3)
    await pool.warm_up(2)
    slot_id = pool.slots[0].id

    await pool.remove_slot(slot_id)

    init = next(r for r in log_records if "Browser pool initialized" in r["message"])
    assert init["extra"]["browsers"] == 2
    assert init["extra"]["max_pool_size"] == 3

    removal = next(r for r in log_records if "Removed browser" in r["message"])
    assert removal["extra"]["slot_id"] == slot_id
    assert removal["extra"]["reason"] == "manual"

    await pool.shutdown()
