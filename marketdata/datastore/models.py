"""
Database models.

SQLAlchemy 2.0 declarative mapping for market data and comparable sales.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from marketdata.utils import utcnow


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""

    pass


class MarketDataDB(Base):
    """Latest market statistics per (location, property_type, data_period)."""

    __tablename__ = "market_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    property_type: Mapped[str] = mapped_column(String(50), nullable=False)
    data_period: Mapped[str] = mapped_column(String(20), nullable=False)
    data_source: Mapped[str] = mapped_column(String(50), default="property24")

    average_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    median_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_per_sqm: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_listings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sold_listings: Mapped[int | None] = mapped_column(Integer, nullable=True)
    average_days_on_market: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_trend: Mapped[str | None] = mapped_column(String(50), nullable=True)
    trend_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    next_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    source_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    comparable_sales: Mapped[list["ComparableSaleDB"]] = relationship(
        back_populates="market_data"
    )

    __table_args__ = (
        UniqueConstraint(
            "location", "property_type", "data_period", name="uq_market_data_key"
        ),
        Index("idx_market_data_updated", "location", "last_updated"),
    )

    def __repr__(self) -> str:
        return (
            f"<MarketData(location={self.location}, type={self.property_type}, "
            f"period={self.data_period})>"
        )


class ComparableSaleDB(Base):
    """Comparable sale, keyed by the id the upstream source assigned."""

    __tablename__ = "comparable_sales"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    market_data_id: Mapped[int] = mapped_column(
        ForeignKey("market_data.id"), nullable=False, index=True
    )
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    suburb: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(255), default="")
    property_type: Mapped[str] = mapped_column(String(50), nullable=False)
    bedrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    bathrooms: Mapped[float | None] = mapped_column(Float, nullable=True)
    size: Mapped[float | None] = mapped_column(Float, nullable=True)
    land_size: Mapped[float | None] = mapped_column(Float, nullable=True)
    sale_price: Mapped[float] = mapped_column(Float, nullable=False)
    sale_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    days_on_market: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    market_data: Mapped[MarketDataDB] = relationship(back_populates="comparable_sales")

    def __repr__(self) -> str:
        return f"<ComparableSale(id={self.id}, address={self.address[:50]})>"
