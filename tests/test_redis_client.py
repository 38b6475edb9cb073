# tests/test_redis_client.py

import json
import pytest

from tablewatch.database.redis_client import RedisClient, redis_url_from_env
from tablewatch.entities import RiskScore
from tests.factories import NOW


class BrokenRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def setex(self, key, ttl, value):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")


class TestRedisUrl:
    """Tests for connection URL resolution."""

    def test_url_wins(self, monkeypatch):
        """✅ REDIS_URL is used as is."""
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
        assert redis_url_from_env() == "redis://cache:6380/2"

    def test_built_from_parts(self, monkeypatch):
        """✅ Host, port and password are combined."""
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("REDIS_HOST", "cache")
        monkeypatch.setenv("REDIS_PORT", "6390")
        monkeypatch.setenv("REDIS_PASSWORD", "secret")
        assert redis_url_from_env() == "redis://:secret@cache:6390"


class TestRedisClient:
    """Tests for the JSON cache helpers."""

    @pytest.mark.asyncio
    async def test_set_and_get_model(self, fake_redis):
        """✅ Pydantic models are stored as JSON under the prefix with a TTL."""
        client = RedisClient(url="redis://unused", client=fake_redis)
        score = RiskScore(player_id="p1", overall_score=0.4, last_calculated=NOW)

        await client.set_cached("risk:p1:", score, 300)

        assert fake_redis.ttls == {"tablewatch:risk:p1:": 300}
        assert json.loads(fake_redis.store["tablewatch:risk:p1:"])["overall_score"] == 0.4

        cached = await client.get_cached("risk:p1:")
        assert RiskScore(**cached) == score

    @pytest.mark.asyncio
    async def test_miss_and_delete(self, fake_redis):
        """✅ Missing keys return None; delete removes the entry."""
        client = RedisClient(url="redis://unused", client=fake_redis)

        assert await client.get_cached("nope") is None
        await client.set_cached("k", {"a": 1}, 10)
        await client.delete("k")
        assert await client.get_cached("k") is None

    @pytest.mark.asyncio
    async def test_backend_errors_degrade_to_miss(self):
        """✅ Redis failures never propagate."""
        client = RedisClient(url="redis://unused", client=BrokenRedis())

        assert await client.get_cached("k") is None
        await client.set_cached("k", {"a": 1}, 10)
        await client.delete("k")

    @pytest.mark.asyncio
    async def test_close(self, fake_redis):
        """✅ Close releases the connection."""
        client = RedisClient(url="redis://unused", client=fake_redis)
        await client.close()

        assert fake_redis.closed is True
