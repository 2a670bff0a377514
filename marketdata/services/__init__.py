"""
Service layer infrastructure - resilience patterns for the market data origin.

Provides:
- RateLimiter: Fixed-window request ceiling per identifier
- CircuitBreaker: Stops calling a failing upstream
- MemoryHotCache / RedisHotCache: Hot cache with explicit expiry
- RequestDeduplicator: Single-flight for concurrent fetches

The orchestrator lives in ``marketdata.services.market_data``.
"""

from marketdata.services.errors import (
    MarketDataError,
    ValidationError,
    RateLimitExceeded,
    CircuitOpen,
    OriginError,
    AuthError,
    OriginRateLimited,
    OriginUnavailable,
    OriginMalformedResponse,
    StorageError,
    CacheError,
    NotFoundError,
)
from marketdata.services.state import SynchronizedMap
from marketdata.services.rate_limiter import RateLimiter, RateLimitState
from marketdata.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
)
from marketdata.services.cache import (
    CacheEntry,
    CacheLookup,
    HotCache,
    MemoryHotCache,
    RedisHotCache,
    cache_key,
)
from marketdata.services.deduplicator import RequestDeduplicator

__all__ = [
    # Errors
    "MarketDataError",
    "ValidationError",
    "RateLimitExceeded",
    "CircuitOpen",
    "OriginError",
    "AuthError",
    "OriginRateLimited",
    "OriginUnavailable",
    "OriginMalformedResponse",
    "StorageError",
    "CacheError",
    "NotFoundError",
    # State
    "SynchronizedMap",
    # Rate limiting
    "RateLimiter",
    "RateLimitState",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    # Cache
    "CacheEntry",
    "CacheLookup",
    "HotCache",
    "MemoryHotCache",
    "RedisHotCache",
    "cache_key",
    # Deduplicator
    "RequestDeduplicator",
]
