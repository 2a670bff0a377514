"""
MarketDataService - resilient retrieval of market data and comparable sales.

Combines:
- RateLimiter per location
- CircuitBreaker around the upstream origin
- HotCache → PersistentStore (fresh) → origin → PersistentStore (stale) tiers
- RequestDeduplicator for concurrent misses on the same key

Request flow:
    validate → rate limit → breaker → hot cache → fresh store lookup
    → origin fetch → {persist + cache + return | breaker failure → stale or raise}
"""

import asyncio
import inspect
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from marketdata.datasource.base import BaseOriginClient
from marketdata.datasource.models import (
    AuditEvent,
    DataPeriod,
    MarketDataRecord,
    MarketDataRequest,
    MarketDataResult,
)
from marketdata.datasource.property24 import Property24Source
from marketdata.datastore.engine import close_db, get_session_factory, init_db
from marketdata.datastore.store import MarketDataStore, PersistentStore
from marketdata.services.cache import (
    HotCache,
    MemoryHotCache,
    RedisHotCache,
    cache_key,
)
from marketdata.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from marketdata.services.deduplicator import RequestDeduplicator
from marketdata.services.errors import (
    CacheError,
    CircuitOpen,
    MarketDataError,
    NotFoundError,
    OriginError,
    RateLimitExceeded,
    StorageError,
    ValidationError,
)
from marketdata.services.rate_limiter import RateLimiter
from marketdata.settings import Settings, global_settings
from marketdata.utils import Clock, utcnow

AuditHook = Callable[[AuditEvent], Awaitable[None] | None]


@dataclass
class MarketDataConfig:
    """Freshness policy and limits for the orchestrator."""

    cache_ttl: timedelta = timedelta(hours=24)
    fresh_max_age: timedelta = timedelta(hours=24)  # store data served without origin call
    stale_max_age: timedelta = timedelta(days=7)  # store data served when origin fails
    health_timeout: float = 5.0
    max_location_length: int = 200
    max_property_type_length: int = 50


class MarketDataService:
    """
    Orchestrates the retrieval tiers behind ``get_market_data``.

    Usage:
        service = MarketDataService(
            hot_cache=MemoryHotCache(),
            store=MarketDataStore(get_session_factory()),
            origin=Property24Source(api_key="..."),
            rate_limiter=RateLimiter(),
            circuit_breaker=CircuitBreaker("property24"),
        )

        result = await service.get_market_data({"location": "Cape Town"})
    """

    def __init__(
        self,
        hot_cache: HotCache,
        store: PersistentStore,
        origin: BaseOriginClient,
        rate_limiter: RateLimiter,
        circuit_breaker: CircuitBreaker,
        config: MarketDataConfig | None = None,
        audit_hook: AuditHook | None = None,
        deduplicator: RequestDeduplicator | None = None,
        clock: Clock = utcnow,
    ):
        self._hot_cache = hot_cache
        self._store = store
        self._origin = origin
        self._rate_limiter = rate_limiter
        self._circuit_breaker = circuit_breaker
        self.config = config or MarketDataConfig()
        self._audit_hook = audit_hook
        self._deduplicator = deduplicator
        self._clock = clock

        self._background: set[asyncio.Task[Any]] = set()
        self.write_failures = 0
        self.audit_failures = 0

    async def get_market_data(
        self, request: MarketDataRequest | Mapping[str, Any]
    ) -> MarketDataResult:
        """
        Return market data for the request.

        Raises:
            ValidationError: Bad or missing input; nothing else is touched
            RateLimitExceeded: Location exceeded its request ceiling
            CircuitOpen: Origin is failing, request rejected without I/O
            OriginError: Origin failed and no stale record was available
        """
        location, property_type, period = self._validate(request)

        if not self._rate_limiter.allow(location):
            raise RateLimitExceeded(location, self._rate_limiter.retry_after(location))

        if not self._circuit_breaker.allow_request():
            raise CircuitOpen(
                self._circuit_breaker.service_id,
                self._circuit_breaker.get_time_until_reset() or 0,
            )

        key = cache_key(location, property_type, period)

        cached = await self._read_cache(key)
        if cached is not None:
            return self._respond(cached, cached=True)

        stored = await self._read_store(location, property_type, period)
        if stored is not None and self._is_fresh(stored):
            await self._write_cache(key, stored)
            return self._respond(stored, cached=False)

        try:
            record = await self._fetch(key, location, property_type, period)
        except OriginError as e:
            stale = await self._read_stale(location, property_type, period)
            if stale is not None:
                logger.warning(
                    f"Origin failed for {key} ({type(e).__name__}: {e}), "
                    f"serving data from {stale.last_updated.isoformat()}"
                )
                return self._respond(stale, cached=True)
            raise

        return self._respond(record, cached=False)

    async def get_cached_market_data(
        self, request: MarketDataRequest | Mapping[str, Any]
    ) -> MarketDataResult:
        """
        Serve from the hot cache or the store only, never calling the origin.

        Raises NotFoundError when neither tier holds a record within the
        stale window.
        """
        location, property_type, period = self._validate(request)
        key = cache_key(location, property_type, period)

        cached = await self._read_cache(key)
        if cached is not None:
            return self._respond(cached, cached=True)

        stale = await self._read_stale(location, property_type, period)
        if stale is None:
            raise NotFoundError(f"No market data for {key}")
        return self._respond(stale, cached=not self._is_fresh(stale))

    def _validate(
        self, request: MarketDataRequest | Mapping[str, Any]
    ) -> tuple[str, str, DataPeriod]:
        if not isinstance(request, MarketDataRequest):
            try:
                request = MarketDataRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid market data request: {e}") from e

        location, property_type, period = request.normalized()
        if not location:
            raise ValidationError("Location is required")
        if len(location) > self.config.max_location_length:
            raise ValidationError("Location is too long")
        if len(property_type) > self.config.max_property_type_length:
            raise ValidationError("Property type is too long")
        return location, property_type, period

    def _is_fresh(self, record: MarketDataRecord) -> bool:
        return self._clock() - record.last_updated < self.config.fresh_max_age

    async def _read_cache(self, key: str) -> MarketDataRecord | None:
        try:
            found = await self._hot_cache.lookup(key)
            if found.expired:
                await self._hot_cache.delete(key)
                return None
            return found.payload
        except CacheError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def _write_cache(self, key: str, record: MarketDataRecord) -> None:
        try:
            await self._hot_cache.set(key, record, self.config.cache_ttl)
        except CacheError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def _read_store(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord | None:
        try:
            return await self._store.find_by_key(location, property_type, period)
        except StorageError as e:
            logger.warning(f"Database read failed for {location}: {e}")
            return None

    async def _read_stale(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord | None:
        try:
            return await self._store.find_stale_by_key(
                location, property_type, period, self.config.stale_max_age
            )
        except StorageError as e:
            logger.warning(f"Stale data read failed for {location}: {e}")
            return None

    async def _fetch(
        self, key: str, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord:
        async def do_fetch() -> MarketDataRecord:
            return await self._fetch_from_origin(key, location, property_type, period)

        if self._deduplicator is not None:
            return await self._deduplicator.dedupe(key, do_fetch)
        return await do_fetch()

    async def _fetch_from_origin(
        self, key: str, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord:
        """One upstream call: report to the breaker, then persist and cache."""
        try:
            record = await self._origin.fetch(location, property_type, period)
        except Exception as e:
            self._circuit_breaker.record_failure()
            logger.error(f"Market data fetch failed for {key}: {e}")
            raise
        self._circuit_breaker.record_success()

        # Keep writing even if the caller goes away mid-request.
        await asyncio.shield(self._spawn(self._persist(record)))
        await self._write_cache(key, record)
        return record

    async def _persist(self, record: MarketDataRecord) -> None:
        try:
            await self._store.upsert(record)
        except StorageError as e:
            self.write_failures += 1
            logger.error(f"Database store failed for {record.location}: {e}")
        except Exception:
            self.write_failures += 1
            logger.exception(f"Unexpected error storing market data for {record.location}")

    def _respond(self, record: MarketDataRecord, cached: bool) -> MarketDataResult:
        self._emit_audit(record)
        return MarketDataResult.from_record(record, cached=cached)

    def _emit_audit(self, record: MarketDataRecord) -> None:
        if self._audit_hook is None:
            return
        event = AuditEvent(
            location=record.location,
            property_type=record.property_type,
            period=record.data_period.value,
            comparable_sale_count=len(record.comparable_sales),
        )
        self._spawn(self._run_audit_hook(event))

    async def _run_audit_hook(self, event: AuditEvent) -> None:
        try:
            outcome = self._audit_hook(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.audit_failures += 1
            logger.error(f"Audit hook failed for {event.location}: {e}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending write-behind and audit tasks."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def health_check(self) -> bool:
        """True only if store, cache and (when configured) origin all respond."""
        checks = [self._store.ping(), self._hot_cache.ping()]
        if self._origin.is_configured():
            checks.append(self._origin.probe())

        try:
            results = await asyncio.wait_for(
                asyncio.gather(*checks), timeout=self.config.health_timeout
            )
        except (MarketDataError, asyncio.TimeoutError) as e:
            logger.error(f"Market data service health check failed: {e}")
            return False
        return all(results)

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "circuit_breaker": self._circuit_breaker.get_status(),
            "rate_limiter": self._rate_limiter.get_status(),
            "write_failures": self.write_failures,
            "audit_failures": self.audit_failures,
            "background_tasks": len(self._background),
        }
        get_stats = getattr(self._hot_cache, "get_stats", None)
        if get_stats is not None:
            status["cache"] = get_stats().to_dict()
        if self._deduplicator is not None:
            status["deduplicator"] = self._deduplicator.get_stats().to_dict()
        return status

    async def close(self) -> None:
        """Flush background work and release the origin client."""
        await self.drain()
        if self._deduplicator is not None:
            await self._deduplicator.cancel_all()
        await self._origin.close()
        close_cache = getattr(self._hot_cache, "close", None)
        if close_cache is not None:
            await close_cache()
        logger.debug("MarketDataService closed")


def build_market_data_service(
    settings: Settings,
    store: PersistentStore,
    hot_cache: HotCache | None = None,
    origin: BaseOriginClient | None = None,
    audit_hook: AuditHook | None = None,
) -> MarketDataService:
    """Wire a service from settings, letting callers substitute any tier."""
    if hot_cache is None:
        if settings.redis_url:
            hot_cache = RedisHotCache.from_url(settings.redis_url)
        else:
            hot_cache = MemoryHotCache(max_size=settings.cache_max_size)

    if origin is None:
        origin = Property24Source(
            api_key=settings.property24_api_key,
            base_url=settings.property24_base_url,
            timeout=settings.request_timeout_ms / 1000,
            health_timeout=settings.health_timeout_ms / 1000,
            limit=settings.comparable_limit,
        )

    return MarketDataService(
        hot_cache=hot_cache,
        store=store,
        origin=origin,
        rate_limiter=RateLimiter(
            max_requests=settings.rate_limit_requests,
            window=timedelta(milliseconds=settings.rate_limit_window_ms),
        ),
        circuit_breaker=CircuitBreaker(
            origin.service_id,
            CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                cool_down=timedelta(seconds=settings.circuit_cooldown_seconds),
            ),
        ),
        config=MarketDataConfig(
            cache_ttl=timedelta(seconds=settings.cache_ttl_seconds),
            fresh_max_age=timedelta(hours=settings.fresh_hours),
            stale_max_age=timedelta(days=settings.stale_days),
            health_timeout=settings.health_timeout_ms / 1000,
        ),
        audit_hook=audit_hook,
        deduplicator=RequestDeduplicator() if settings.dedupe_fetches else None,
    )


# Global service instance
_global_service: MarketDataService | None = None


async def get_market_data_service() -> MarketDataService:
    """Get the global service, initializing the database on first use."""
    global _global_service
    if _global_service is None:
        await init_db(global_settings.database_url)
        _global_service = build_market_data_service(
            global_settings,
            store=MarketDataStore(
                get_session_factory(), sales_limit=global_settings.comparable_limit
            ),
        )
    return _global_service


async def close_market_data_service() -> None:
    """Close the global service and its database engine."""
    global _global_service
    if _global_service:
        await _global_service.close()
        _global_service = None
    await close_db()
