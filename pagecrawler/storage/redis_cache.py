import asyncio
import json
from typing import Any, Optional

import redis.asyncio as aioredis
from loguru import logger
from redis.asyncio.client import Redis


class RedisResultCache:
    """
    Result cache backed by Redis. Values are stored as JSON with a TTL.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        default_ttl: int = 3600,
        key_prefix: str = "page:",
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.key_prefix = key_prefix
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize async Redis connection with retry logic."""
        for attempt in range(1, self.max_retries + 1):
            try:
                self.client = aioredis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_timeout=5,
                    health_check_interval=30,
                )
                if await self.client.ping():
                    logger.info(f"Connected to Redis result cache: {self.redis_url}")
                    return
            except Exception as e:
                logger.warning(f"[Redis] Connection attempt {attempt} failed: {e}")
                await asyncio.sleep(self.retry_delay)

        raise ConnectionError(f"[Redis] Could not connect after {self.max_retries} retries.")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        if not self.client:
            raise RuntimeError("Redis client is not connected.")
        raw = await self.client.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if not self.client:
            raise RuntimeError("Redis client is not connected.")
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        await self.client.setex(self._key(key), ttl, json.dumps(value))
        logger.debug(f"Cached result under key {key}")

    async def disconnect(self) -> None:
        """Gracefully close the Redis connection."""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis connection closed.")
