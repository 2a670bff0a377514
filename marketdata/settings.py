import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Property24 upstream
    property24_api_key: str = Field(default="", alias="PROPERTY24_API_KEY")
    property24_base_url: str = Field(
        default="https://api.property24.com", alias="PROPERTY24_BASE_URL"
    )
    request_timeout_ms: int = Field(default=30000, alias="MARKET_DATA_REQUEST_TIMEOUT")
    health_timeout_ms: int = Field(default=5000, alias="MARKET_DATA_HEALTH_TIMEOUT")

    # Rate limiting (per location)
    rate_limit_requests: int = Field(
        default=100, alias="MARKET_DATA_RATE_LIMIT_REQUESTS"
    )
    rate_limit_window_ms: int = Field(
        default=3600000, alias="MARKET_DATA_RATE_LIMIT_WINDOW_MS"
    )

    # Cache and freshness
    cache_ttl_seconds: int = Field(default=86400, alias="MARKET_DATA_CACHE_TTL")
    cache_max_size: int = Field(default=1000, alias="MARKET_DATA_CACHE_MAX_SIZE")
    fresh_hours: int = Field(default=24, alias="MARKET_DATA_FRESH_HOURS")
    stale_days: int = Field(default=7, alias="MARKET_DATA_STALE_DAYS")
    comparable_limit: int = Field(default=20, alias="MARKET_DATA_COMPARABLE_LIMIT")
    dedupe_fetches: bool = Field(default=True, alias="MARKET_DATA_DEDUPE_FETCHES")

    # Circuit breaker
    circuit_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_cooldown_seconds: float = Field(
        default=60.0, alias="CIRCUIT_BREAKER_COOLDOWN_SECONDS"
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./marketdata.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    redis_url: str = Field(default="", alias="REDIS_URL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (after .env is loaded)."""
        return cls.model_validate(dict(os.environ))


global_settings = Settings.from_env()
