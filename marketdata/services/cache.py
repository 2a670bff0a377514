"""
HotCache - Low-latency key → MarketDataRecord store with explicit expiry.

Every entry carries an absolute ``expiry``. Reads always compare it with the
clock, even when the backend (Redis) expires keys on its own, so the store's
TTL bookkeeping and our freshness judgement can never disagree. An expired
entry reads as a miss; reads never delete, the caller evicts.

Backends:
- MemoryHotCache: in-process dict, evicts the entry nearest expiry when full
- RedisHotCache: shared Redis instance via redis.asyncio
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from marketdata.datasource.models import DataPeriod, MarketDataRecord
from marketdata.services.errors import CacheError
from marketdata.utils import Clock, ensure_utc, utcnow


def cache_key(location: str, property_type: str, period: DataPeriod | str) -> str:
    """Composite key for (location, property_type, period)."""
    period_value = period.value if isinstance(period, DataPeriod) else period
    slug = "_".join(location.lower().split())
    return f"market:{slug}:{property_type.lower()}:{period_value}"


@dataclass
class CacheEntry:
    """A single cache entry."""

    key: str
    payload: MarketDataRecord
    expiry: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry


@dataclass
class CacheLookup:
    """Result from a cache lookup. ``payload`` is None on a miss."""

    payload: MarketDataRecord | None = None
    expired: bool = False

    @property
    def hit(self) -> bool:
        return self.payload is not None


class HotCache(Protocol):
    async def lookup(self, key: str) -> CacheLookup: ...

    async def get(self, key: str) -> MarketDataRecord | None: ...

    async def set(self, key: str, payload: MarketDataRecord, ttl: timedelta) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def ping(self) -> bool: ...


class MemoryHotCache:
    """
    In-process hot cache.

    Usage:
        cache = MemoryHotCache(max_size=500)

        found = await cache.lookup(key)
        if found.expired:
            await cache.delete(key)
        elif found.hit:
            return found.payload

        await cache.set(key, record, ttl=timedelta(hours=24))
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Clock = utcnow,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def lookup(self, key: str) -> CacheLookup:
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key}")
                return CacheLookup()

            if entry.is_expired(self._clock()):
                self._stats.misses += 1
                self._log(f"EXPIRED: {key}")
                return CacheLookup(expired=True)

            self._stats.hits += 1
            self._log(f"HIT: {key}")
            return CacheLookup(payload=entry.payload.model_copy(deep=True))

    async def get(self, key: str) -> MarketDataRecord | None:
        return (await self.lookup(key)).payload

    async def set(self, key: str, payload: MarketDataRecord, ttl: timedelta) -> None:
        entry = CacheEntry(
            key=key,
            payload=payload.model_copy(deep=True),
            expiry=self._clock() + ttl,
        )

        async with self._lock:
            if len(self._memory) >= self._max_size and key not in self._memory:
                self._evict_nearest_expiry()

            self._memory[key] = entry
            self._log(f"SET: {key} (TTL: {ttl.total_seconds()}s)")

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key}")
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def ping(self) -> bool:
        return True

    def _evict_nearest_expiry(self) -> None:
        """Evict the entry closest to expiry."""
        if not self._memory:
            return

        evicted_key = min(self._memory, key=lambda k: self._memory[k].expiry)
        del self._memory[evicted_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {evicted_key}")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[MemoryHotCache] {message}")


class RedisHotCache:
    """
    Redis-backed hot cache.

    Values are stored as ``{"data": <record>, "expiry": <iso timestamp>}``
    with SETEX, so Redis drops them on its own schedule while lookups still
    check ``expiry`` themselves.
    """

    def __init__(
        self,
        client: redis.Redis,
        clock: Clock = utcnow,
        debug: bool = False,
    ):
        self._client = client
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisHotCache":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    async def lookup(self, key: str) -> CacheLookup:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            raise CacheError(f"Redis GET failed for {key}: {e}") from e

        if raw is None:
            self._stats.misses += 1
            self._log(f"MISS: {key}")
            return CacheLookup()

        try:
            parsed = json.loads(raw)
            expiry = ensure_utc(datetime.fromisoformat(parsed["expiry"]))
            payload = MarketDataRecord.model_validate(parsed["data"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            self._stats.misses += 1
            return CacheLookup(expired=True)

        if self._clock() >= expiry:
            self._stats.misses += 1
            self._log(f"EXPIRED: {key}")
            return CacheLookup(expired=True)

        self._stats.hits += 1
        self._log(f"HIT: {key}")
        return CacheLookup(payload=payload)

    async def get(self, key: str) -> MarketDataRecord | None:
        return (await self.lookup(key)).payload

    async def set(self, key: str, payload: MarketDataRecord, ttl: timedelta) -> None:
        body = json.dumps(
            {
                "data": payload.model_dump(mode="json"),
                "expiry": (self._clock() + ttl).isoformat(),
            }
        )
        seconds = max(1, int(ttl.total_seconds()))
        try:
            await self._client.setex(key, seconds, body)
        except RedisError as e:
            raise CacheError(f"Redis SETEX failed for {key}: {e}") from e
        self._log(f"SET: {key} (TTL: {seconds}s)")

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._client.delete(key)
        except RedisError as e:
            raise CacheError(f"Redis DEL failed for {key}: {e}") from e
        return bool(removed)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            raise CacheError(f"Redis PING failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()

    def get_stats(self) -> "CacheStats":
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RedisHotCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
