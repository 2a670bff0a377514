"""
Repository layer - data access for market data within one session.
"""

from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketdata.datastore.models import ComparableSaleDB, MarketDataDB
from marketdata.datasource.models import (
    COMPARABLE_SALES_LIMIT,
    ComparableSale,
    MarketDataRecord,
)
from marketdata.utils import utcnow

NEXT_UPDATE_INTERVAL = timedelta(hours=24)


class MarketDataRepository:
    """Market data Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_latest(
        self,
        location: str,
        property_type: str,
        data_period: str,
        updated_since: datetime | None = None,
        sales_limit: int = COMPARABLE_SALES_LIMIT,
    ) -> MarketDataRecord | None:
        """Most recent active row for the key, optionally no older than ``updated_since``."""
        stmt = select(MarketDataDB).where(
            MarketDataDB.location == location,
            MarketDataDB.property_type == property_type,
            MarketDataDB.data_period == data_period,
            MarketDataDB.is_active.is_(True),
        )
        if updated_since is not None:
            stmt = stmt.where(MarketDataDB.last_updated >= updated_since)
        stmt = stmt.order_by(MarketDataDB.last_updated.desc()).limit(1)

        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None

        sales = await self.session.execute(
            select(ComparableSaleDB)
            .where(
                ComparableSaleDB.market_data_id == row.id,
                ComparableSaleDB.is_active.is_(True),
            )
            .order_by(ComparableSaleDB.sale_date.desc())
            .limit(sales_limit)
        )
        return self._to_record(row, list(sales.scalars().all()))

    async def upsert(self, record: MarketDataRecord, source: str = "property24") -> int:
        """Create or replace the row for the record's key and its comparable sales."""
        result = await self.session.execute(
            select(MarketDataDB).where(
                MarketDataDB.location == record.location,
                MarketDataDB.property_type == record.property_type,
                MarketDataDB.data_period == record.data_period.value,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = MarketDataDB(
                location=record.location,
                property_type=record.property_type,
                data_period=record.data_period.value,
                data_source=source,
            )
            self.session.add(row)
            logger.debug(f"Creating market data row for {record.location}")

        row.average_price = record.average_price
        row.median_price = record.median_price
        row.price_per_sqm = record.price_per_sqm
        row.total_listings = record.total_listings
        row.sold_listings = record.sold_listings
        row.average_days_on_market = record.average_days_on_market
        row.price_trend = record.price_trend
        row.trend_percentage = record.trend_percentage
        row.last_updated = record.last_updated
        row.next_update = record.last_updated + NEXT_UPDATE_INTERVAL
        row.is_active = True
        row.source_metadata = {"source": source, "fetched_at": utcnow().isoformat()}

        await self.session.flush()

        unique_sales = {sale.id: sale for sale in record.comparable_sales}

        # The record's sale list replaces whatever an earlier write linked to this key.
        superseded = ComparableSaleDB.market_data_id == row.id
        if unique_sales:
            superseded = superseded & ComparableSaleDB.id.not_in(list(unique_sales))
        await self.session.execute(
            update(ComparableSaleDB).where(superseded).values(is_active=False)
        )

        for sale in unique_sales.values():
            sale_row = await self.session.get(ComparableSaleDB, sale.id)
            if sale_row is None:
                sale_row = ComparableSaleDB(id=sale.id)
                self.session.add(sale_row)
            sale_row.market_data_id = row.id
            sale_row.address = sale.address
            sale_row.suburb = sale.suburb
            sale_row.city = sale.city
            sale_row.property_type = sale.property_type
            sale_row.bedrooms = sale.bedrooms
            sale_row.bathrooms = sale.bathrooms
            sale_row.size = sale.size
            sale_row.land_size = sale.land_size
            sale_row.sale_price = sale.sale_price
            sale_row.sale_date = sale.sale_date
            sale_row.days_on_market = sale.days_on_market
            sale_row.source = sale.source
            sale_row.is_active = True

        await self.session.flush()
        return row.id

    @staticmethod
    def _to_record(
        row: MarketDataDB, sales: list[ComparableSaleDB]
    ) -> MarketDataRecord:
        return MarketDataRecord(
            location=row.location,
            property_type=row.property_type,
            data_period=row.data_period,
            average_price=row.average_price,
            median_price=row.median_price,
            price_per_sqm=row.price_per_sqm,
            total_listings=row.total_listings,
            sold_listings=row.sold_listings,
            average_days_on_market=row.average_days_on_market,
            price_trend=row.price_trend,
            trend_percentage=row.trend_percentage,
            last_updated=row.last_updated,
            comparable_sales=[
                ComparableSale(
                    id=s.id,
                    address=s.address,
                    suburb=s.suburb,
                    city=s.city,
                    property_type=s.property_type,
                    bedrooms=s.bedrooms,
                    bathrooms=s.bathrooms,
                    size=s.size,
                    land_size=s.land_size,
                    sale_price=s.sale_price,
                    sale_date=s.sale_date,
                    days_on_market=s.days_on_market,
                    source=s.source,
                )
                for s in sales
            ],
        )
