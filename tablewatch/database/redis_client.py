"""
Redis client for the shared risk-score cache
Second cache level behind the in-process cache; failures degrade to a miss
"""
import os
import json
from typing import Optional, Any
from redis import asyncio as aioredis
from redis.asyncio import Redis
import logging

logger = logging.getLogger(__name__)


def redis_url_from_env() -> str:
    """REDIS_URL wins, otherwise build from REDIS_HOST/PORT/PASSWORD"""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        return redis_url

    redis_host = os.getenv("REDIS_HOST", "localhost")
    redis_port = os.getenv("REDIS_PORT", "6379")
    redis_password = os.getenv("REDIS_PASSWORD")

    if redis_password:
        return f"redis://:{redis_password}@{redis_host}:{redis_port}"
    return f"redis://{redis_host}:{redis_port}"


class RedisClient:
    """Async Redis wrapper with JSON get/set helpers"""

    def __init__(self, url: Optional[str] = None, client: Optional[Redis] = None, prefix: str = "tablewatch:"):
        self.url = url or redis_url_from_env()
        self.prefix = prefix
        self._client = client
        self._unavailable = False

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get_client(self) -> Optional[Redis]:
        if self._client is None and not self._unavailable:
            try:
                client = aioredis.from_url(
                    self.url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                    health_check_interval=30
                )
                await client.ping()
                self._client = client
                logger.info(f"✅ Redis connected: {self.url.split('@')[-1]}")
            except Exception as e:
                logger.warning(f"⚠️ Redis connection failed: {e}. Shared cache disabled.")
                self._unavailable = True

        return self._client

    async def get_cached(self, key: str) -> Optional[dict]:
        client = await self.get_client()
        if not client:
            return None

        try:
            cached = await client.get(self._key(key))
        except Exception as e:
            logger.warning(f"⚠️ Cache get failed: {e}")
            return None

        if cached:
            logger.debug(f"🎯 Redis HIT: {key}")
            return json.loads(cached)
        logger.debug(f"❌ Redis MISS: {key}")
        return None

    async def set_cached(self, key: str, value: Any, ttl_seconds: int):
        """Store pydantic models or JSON-serializable values with a TTL"""
        client = await self.get_client()
        if not client:
            return

        if hasattr(value, 'model_dump'):
            value = value.model_dump(mode="json")

        try:
            await client.setex(self._key(key), ttl_seconds, json.dumps(value, default=str))
            logger.debug(f"💾 Redis SET: {key} (TTL: {ttl_seconds}s)")
        except Exception as e:
            logger.warning(f"⚠️ Cache set failed: {e}")

    async def delete(self, key: str):
        client = await self.get_client()
        if not client:
            return

        try:
            await client.delete(self._key(key))
        except Exception as e:
            logger.warning(f"⚠️ Cache delete failed: {e}")

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
