"""
Property24 market data origin.

GET {base_url}/market-data?location=&propertyType=&period=&includeComparableSales=true&limit=
returns ``{"data": {"properties": [...], "marketStats": {...}}}``.
"""

from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from marketdata.datasource.base import BaseOriginClient
from marketdata.datasource.models import (
    COMPARABLE_SALES_LIMIT,
    ComparableSale,
    DataPeriod,
    MarketDataRecord,
    Property24Payload,
)
from marketdata.services.errors import (
    AuthError,
    OriginError,
    OriginMalformedResponse,
    OriginRateLimited,
    OriginUnavailable,
)
from marketdata.utils import Clock, normalize_location, utcnow


class Property24Source(BaseOriginClient):
    """
    Property24 API client.

    Translates HTTP outcomes into OriginError subclasses:
    401/403 → AuthError, 429 → OriginRateLimited, 5xx/timeout/network →
    OriginUnavailable, unusable body → OriginMalformedResponse.
    """

    DEFAULT_BASE_URL = "https://api.property24.com"
    SERVICE_ID = "property24"
    USER_AGENT = "RealEstateAI-MarketData/1.0"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        health_timeout: float = 5.0,
        limit: int = COMPARABLE_SALES_LIMIT,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utcnow,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.health_timeout = health_timeout
        self.limit = limit
        self._clock = clock
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": self.USER_AGENT,
                },
            )
        return self._http_client

    async def fetch(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord:
        period = DataPeriod(period)
        params = {
            "location": location,
            "propertyType": property_type,
            "period": period.value,
            "includeComparableSales": "true",
            "limit": self.limit,
        }
        body = await self._get("/market-data", params=params, timeout=self.timeout)
        return self._to_record(body, location, property_type, period)

    async def probe(self) -> bool:
        await self._get("/health", timeout=self.health_timeout)
        return True

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        client = self._get_http_client()
        try:
            response = await client.get(path, params=params, timeout=timeout)
        except httpx.TimeoutException as e:
            raise OriginUnavailable(
                f"Property24 API request timeout after {timeout}s",
                service_id=self.SERVICE_ID,
            ) from e
        except httpx.RequestError as e:
            raise OriginUnavailable(
                f"Property24 API network error: {e}", service_id=self.SERVICE_ID
            ) from e

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            raise OriginMalformedResponse(
                "Property24 API returned a non-JSON body",
                service_id=self.SERVICE_ID,
                status_code=response.status_code,
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        if status in (401, 403):
            raise AuthError(
                f"Property24 API authentication failed ({status})",
                service_id=self.SERVICE_ID,
                status_code=status,
            )
        if status == 429:
            raise OriginRateLimited(
                "Property24 API rate limit exceeded",
                service_id=self.SERVICE_ID,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 500:
            raise OriginUnavailable(
                f"Property24 API server error ({status})",
                service_id=self.SERVICE_ID,
                status_code=status,
            )
        raise OriginError(
            f"Property24 API error: {status} {response.text[:200]}",
            service_id=self.SERVICE_ID,
            status_code=status,
        )

    def _to_record(
        self,
        body: Any,
        location: str,
        property_type: str,
        period: DataPeriod,
    ) -> MarketDataRecord:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise OriginMalformedResponse(
                "Property24 API response has no data object",
                service_id=self.SERVICE_ID,
            )
        if data.get("properties") is None or data.get("marketStats") is None:
            raise OriginMalformedResponse(
                "Property24 API response is missing properties or marketStats",
                service_id=self.SERVICE_ID,
            )

        try:
            payload = Property24Payload.model_validate(data)
        except PydanticValidationError as e:
            raise OriginMalformedResponse(
                f"Property24 API response failed validation: {e.error_count()} errors",
                service_id=self.SERVICE_ID,
            ) from e

        sales = [
            ComparableSale(
                id=prop.id,
                address=prop.address,
                suburb=prop.suburb,
                city=prop.city,
                property_type=prop.property_type,
                bedrooms=prop.bedrooms,
                bathrooms=prop.bathrooms,
                size=prop.size,
                land_size=prop.land_size,
                sale_price=prop.price,
                sale_date=prop.sale_date,
                days_on_market=prop.days_on_market,
                source=self.SERVICE_ID,
            )
            for prop in payload.properties
        ]
        sales.sort(key=lambda s: s.sale_date, reverse=True)

        stats = payload.market_stats
        logger.debug(
            f"Property24 returned {len(sales)} comparable sales for {location}"
        )
        return MarketDataRecord(
            location=normalize_location(location),
            property_type=property_type.lower(),
            data_period=period,
            average_price=stats.average_price,
            median_price=stats.median_price,
            price_per_sqm=stats.price_per_sqm,
            total_listings=stats.total_listings,
            sold_listings=stats.sold_listings,
            average_days_on_market=(
                round(stats.average_days_on_market)
                if stats.average_days_on_market is not None
                else None
            ),
            price_trend=stats.price_trend,
            trend_percentage=stats.trend_percentage,
            last_updated=self._clock(),
            comparable_sales=sales[: self.limit],
        )

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
