"""
Market data models shared by the origin client, the stores and callers.

Field names are snake_case in Python; ``model_dump(by_alias=True)`` yields the
camelCase shape internal callers consume.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from marketdata.utils import ensure_utc, normalize_location

PROPERTY_TYPES = ["house", "apartment", "townhouse", "duplex", "vacant_land"]
DEFAULT_PROPERTY_TYPE = "house"
COMPARABLE_SALES_LIMIT = 20


class DataPeriod(str, Enum):
    """Look-back window for market statistics."""

    THREE_MONTHS = "3months"
    SIX_MONTHS = "6months"
    ONE_YEAR = "1year"


DATA_PERIODS = [p.value for p in DataPeriod]
DEFAULT_PERIOD = DataPeriod.SIX_MONTHS


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComparableSale(_CamelModel):
    """A single recent sale near the requested location."""

    id: str
    address: str
    suburb: str
    city: str
    property_type: str
    bedrooms: float | None = None
    bathrooms: float | None = None
    size: float | None = None
    land_size: float | None = None
    sale_price: float
    sale_date: datetime
    days_on_market: int | None = None
    source: str

    @field_validator("sale_date")
    @classmethod
    def _utc_sale_date(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class MarketDataRecord(_CamelModel):
    """Latest market statistics for (location, property_type, data_period)."""

    location: str
    property_type: str
    data_period: DataPeriod
    average_price: float | None = None
    median_price: float | None = None
    price_per_sqm: float | None = None
    total_listings: int | None = None
    sold_listings: int | None = None
    average_days_on_market: int | None = None
    price_trend: str | None = None
    trend_percentage: float | None = None
    last_updated: datetime
    comparable_sales: list[ComparableSale] = Field(default_factory=list)

    @field_validator("last_updated")
    @classmethod
    def _utc_last_updated(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class MarketDataResult(MarketDataRecord):
    """Record returned to callers, flagged with where it came from."""

    cached: bool

    @classmethod
    def from_record(cls, record: MarketDataRecord, cached: bool) -> "MarketDataResult":
        return cls(**record.model_dump(), cached=cached)


class MarketDataRequest(_CamelModel):
    """Inbound request. Only ``location`` is required."""

    location: str
    property_type: str | None = None
    period: DataPeriod | None = None

    def normalized(self) -> tuple[str, str, DataPeriod]:
        """Canonical (location, property_type, period) with defaults applied."""
        property_type = (self.property_type or "").strip().lower()
        return (
            normalize_location(self.location),
            property_type or DEFAULT_PROPERTY_TYPE,
            self.period or DEFAULT_PERIOD,
        )


class AuditEvent(BaseModel):
    """Payload for the audit hook. Carries no personal data."""

    location: str
    property_type: str
    period: str
    comparable_sale_count: int


def get_options() -> dict[str, Any]:
    """Supported request values."""
    return {
        "property_types": PROPERTY_TYPES,
        "periods": DATA_PERIODS,
        "description": (
            "Market data provides average prices, trends, and comparable "
            "sales for property valuation"
        ),
    }


# Upstream payload shapes. Only the fields we consume are declared.


class Property24Property(BaseModel):
    id: str
    address: str
    suburb: str
    city: str
    property_type: str = Field(alias="propertyType")
    bedrooms: float | None = None
    bathrooms: float | None = None
    size: float | None = None
    land_size: float | None = Field(default=None, alias="landSize")
    price: float
    sale_date: datetime = Field(alias="saleDate")
    days_on_market: int | None = Field(default=None, alias="daysOnMarket")

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class Property24MarketStats(BaseModel):
    average_price: float | None = Field(default=None, alias="averagePrice")
    median_price: float | None = Field(default=None, alias="medianPrice")
    price_per_sqm: float | None = Field(default=None, alias="pricePerSqm")
    total_listings: int | None = Field(default=None, alias="totalListings")
    sold_listings: int | None = Field(default=None, alias="soldListings")
    average_days_on_market: float | None = Field(
        default=None, alias="averageDaysOnMarket"
    )
    price_trend: str | None = Field(default=None, alias="priceTrend")
    trend_percentage: float | None = Field(default=None, alias="trendPercentage")


class Property24Payload(BaseModel):
    properties: list[Property24Property]
    market_stats: Property24MarketStats = Field(alias="marketStats")
