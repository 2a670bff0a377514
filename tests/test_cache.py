"""
Tests for the hot cache backends.

Tests cover:
- Set/get round trip and TTL expiry
- Expired entries read as misses but are not evicted by the read
- Eviction of the entry nearest expiry, and stats
- Redis backend payload format, expiry check and error translation
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from marketdata.datasource.models import DataPeriod
from marketdata.services.cache import MemoryHotCache, RedisHotCache, cache_key
from marketdata.services.errors import CacheError

from tests.factories import make_record


class TestCacheKey:
    """Tests for composite key generation."""

    def test_key_format(self):
        key = cache_key("Cape  Town", "House", DataPeriod.SIX_MONTHS)
        assert key == "market:cape_town:house:6months"

    def test_accepts_period_string(self):
        assert cache_key("durban", "apartment", "1year") == "market:durban:apartment:1year"


class TestMemoryHotCache:
    """Tests for the in-process backend."""

    @pytest.mark.asyncio
    async def test_set_then_get_returns_same_payload(self, clock):
        cache = MemoryHotCache(clock=clock)
        record = make_record()

        await cache.set("k", record, timedelta(minutes=5))

        assert await cache.get("k") == record

    @pytest.mark.asyncio
    async def test_returned_payload_is_a_copy(self, clock):
        cache = MemoryHotCache(clock=clock)
        await cache.set("k", make_record(), timedelta(minutes=5))

        first = await cache.get("k")
        first.comparable_sales.clear()

        assert len((await cache.get("k")).comparable_sales) == 3

    @pytest.mark.asyncio
    async def test_miss_for_unknown_key(self, clock):
        cache = MemoryHotCache(clock=clock)
        found = await cache.lookup("nope")
        assert found.hit is False
        assert found.expired is False

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, clock):
        """After the TTL elapses get() misses and lookup() flags it expired."""
        cache = MemoryHotCache(clock=clock)
        await cache.set("k", make_record(), timedelta(minutes=5))

        clock.advance(minutes=5)

        assert await cache.get("k") is None
        found = await cache.lookup("k")
        assert found.expired is True

    @pytest.mark.asyncio
    async def test_read_does_not_evict(self, clock):
        """Eviction is left to the caller."""
        cache = MemoryHotCache(clock=clock)
        await cache.set("k", make_record(), timedelta(minutes=5))
        clock.advance(minutes=10)

        await cache.get("k")

        assert cache.get_stats().size == 1
        assert await cache.delete("k") is True
        assert cache.get_stats().size == 0

    @pytest.mark.asyncio
    async def test_evicts_when_full(self, clock):
        cache = MemoryHotCache(max_size=2, clock=clock)
        await cache.set("a", make_record(), timedelta(minutes=1))
        await cache.set("b", make_record(), timedelta(minutes=10))
        await cache.set("c", make_record(), timedelta(minutes=10))

        assert await cache.get("a") is None
        assert await cache.get("b") is not None
        assert cache.get_stats().evictions == 1

    @pytest.mark.asyncio
    async def test_stats(self, clock):
        cache = MemoryHotCache(clock=clock)
        await cache.set("k", make_record(), timedelta(minutes=5))
        await cache.get("k")
        await cache.get("missing")

        stats = cache.get_stats().to_dict()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.00%"

    @pytest.mark.asyncio
    async def test_ping(self):
        assert await MemoryHotCache().ping() is True


class TestRedisHotCache:
    """Tests for the Redis backend against a mocked client."""

    @pytest.mark.asyncio
    async def test_set_writes_payload_with_expiry(self, clock):
        client = AsyncMock()
        cache = RedisHotCache(client, clock=clock)

        await cache.set("k", make_record(), timedelta(hours=24))

        key, seconds, body = client.setex.await_args.args
        assert key == "k"
        assert seconds == 86400
        parsed = json.loads(body)
        assert parsed["data"]["location"] == "cape town"
        assert parsed["expiry"] == (clock.now + timedelta(hours=24)).isoformat()

    @pytest.mark.asyncio
    async def test_round_trip_through_stored_body(self, clock):
        client = AsyncMock()
        cache = RedisHotCache(client, clock=clock)
        record = make_record()
        await cache.set("k", record, timedelta(minutes=5))
        client.get.return_value = client.setex.await_args.args[2]

        assert await cache.get("k") == record

    @pytest.mark.asyncio
    async def test_checks_expiry_even_if_redis_returns_value(self, clock):
        """A value Redis has not yet dropped is still a miss once expired."""
        client = AsyncMock()
        cache = RedisHotCache(client, clock=clock)
        await cache.set("k", make_record(), timedelta(minutes=5))
        client.get.return_value = client.setex.await_args.args[2]

        clock.advance(minutes=6)

        found = await cache.lookup("k")
        assert found.hit is False
        assert found.expired is True

    @pytest.mark.asyncio
    async def test_miss(self, clock):
        client = AsyncMock()
        client.get.return_value = None
        cache = RedisHotCache(client, clock=clock)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_treated_as_expired(self, clock):
        client = AsyncMock()
        client.get.return_value = "not json"
        cache = RedisHotCache(client, clock=clock)

        found = await cache.lookup("k")

        assert found.expired is True

    @pytest.mark.asyncio
    async def test_redis_errors_become_cache_errors(self, clock):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        client.ping.side_effect = RedisConnectionError("down")
        cache = RedisHotCache(client, clock=clock)

        with pytest.raises(CacheError):
            await cache.get("k")
        with pytest.raises(CacheError):
            await cache.ping()

    @pytest.mark.asyncio
    async def test_delete(self, clock):
        client = AsyncMock()
        client.delete.return_value = 1
        cache = RedisHotCache(client, clock=clock)

        assert await cache.delete("k") is True
        client.delete.assert_awaited_once_with("k")
