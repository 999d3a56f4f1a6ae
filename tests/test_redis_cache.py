import json

import pytest

from pagecrawler.storage.redis_cache import RedisResultCache


class RecordingRedis:
    def __init__(self, *, ping_result=True):
        self.ping_result = ping_result
        self.store = {}
        self.setex_calls = []
        self.closed = False

    async def ping(self):
        return self.ping_result

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.setex_calls.append((key, ttl, value))
        self.store[key] = value

    async def aclose(self):
        self.closed = True


@pytest.mark.anyio
async def test_connect_uses_configured_url(monkeypatch):
    created = {}
    fake = RecordingRedis()

    def fake_from_url(url, **kwargs):
        created["url"] = url
        created["kwargs"] = kwargs
        return fake

    monkeypatch.setattr("pagecrawler.storage.redis_cache.aioredis.from_url", fake_from_url)

    cache = RedisResultCache("redis://cache:6379/2")
    await cache.connect()

    assert created["url"] == "redis://cache:6379/2"
    assert created["kwargs"]["decode_responses"] is True
    assert cache.client is fake


@pytest.mark.anyio
async def test_connect_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr(
        "pagecrawler.storage.redis_cache.aioredis.from_url",
        lambda url, **kwargs: RecordingRedis(ping_result=False),
    )

    cache = RedisResultCache("redis://cache:6379", max_retries=2, retry_delay=0)

    with pytest.raises(ConnectionError):
        await cache.connect()


@pytest.mark.anyio
async def test_set_and_get_round_trip_json_with_ttl():
    cache = RedisResultCache("redis://unused", default_ttl=300)
    cache.client = RecordingRedis()

    await cache.set("https://example.com/", {"url": "https://example.com/", "links": []})
    await cache.set("https://example.com/a", {"url": "https://example.com/a"}, 42)

    assert cache.client.setex_calls[0][0] == "page:https://example.com/"
    assert cache.client.setex_calls[0][1] == 300
    assert cache.client.setex_calls[1][1] == 42
    assert json.loads(cache.client.setex_calls[0][2])["links"] == []
    assert await cache.get("https://example.com/a") == {"url": "https://example.com/a"}
    assert await cache.get("https://example.com/missing") is None


@pytest.mark.anyio
async def test_operations_require_connection():
    cache = RedisResultCache("redis://unused")

    with pytest.raises(RuntimeError):
        await cache.get("k")

    await cache.disconnect()
