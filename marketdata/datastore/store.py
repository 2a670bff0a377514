"""
MarketDataStore - durable store of the latest record per key.

Opens one session per operation and turns every SQLAlchemy failure into a
StorageError, so the orchestrator never sees driver exceptions.
"""

from datetime import timedelta
from typing import Protocol

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketdata.datasource.models import (
    COMPARABLE_SALES_LIMIT,
    DataPeriod,
    MarketDataRecord,
)
from marketdata.datastore.repositories import MarketDataRepository
from marketdata.services.errors import StorageError
from marketdata.utils import Clock, utcnow


class PersistentStore(Protocol):
    async def find_by_key(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord | None: ...

    async def find_stale_by_key(
        self,
        location: str,
        property_type: str,
        period: DataPeriod,
        max_age: timedelta,
    ) -> MarketDataRecord | None: ...

    async def upsert(self, record: MarketDataRecord) -> None: ...

    async def ping(self) -> bool: ...


class MarketDataStore:
    """
    SQLAlchemy-backed persistent store.

    Usage:
        await init_db()
        store = MarketDataStore(get_session_factory())

        record = await store.find_by_key("cape town", "house", DataPeriod.SIX_MONTHS)
    """

    # Concurrent first writes for the same key race on the unique constraint;
    # the loser retries and takes the update path.
    UPSERT_ATTEMPTS = 2

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sales_limit: int = COMPARABLE_SALES_LIMIT,
        source: str = "property24",
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._sales_limit = sales_limit
        self._source = source
        self._clock = clock

    async def find_by_key(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord | None:
        """Latest active record for the key, whatever its age."""
        try:
            async with self._session_factory() as session:
                return await MarketDataRepository(session).find_latest(
                    location,
                    property_type,
                    DataPeriod(period).value,
                    sales_limit=self._sales_limit,
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Market data read failed: {e}") from e

    async def find_stale_by_key(
        self,
        location: str,
        property_type: str,
        period: DataPeriod,
        max_age: timedelta,
    ) -> MarketDataRecord | None:
        """Latest active record for the key updated within ``max_age``."""
        cutoff = self._clock() - max_age
        try:
            async with self._session_factory() as session:
                return await MarketDataRepository(session).find_latest(
                    location,
                    property_type,
                    DataPeriod(period).value,
                    updated_since=cutoff,
                    sales_limit=self._sales_limit,
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Stale market data read failed: {e}") from e

    async def upsert(self, record: MarketDataRecord) -> None:
        """Idempotent create-or-replace by composite key and sale id."""
        for attempt in range(1, self.UPSERT_ATTEMPTS + 1):
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        await MarketDataRepository(session).upsert(
                            record, source=self._source
                        )
                logger.debug(
                    f"Stored market data for {record.location} "
                    f"({len(record.comparable_sales)} comparable sales)"
                )
                return
            except IntegrityError as e:
                if attempt == self.UPSERT_ATTEMPTS:
                    raise StorageError(f"Market data write failed: {e}") from e
                logger.debug(f"Upsert conflict for {record.location}, retrying")
            except SQLAlchemyError as e:
                raise StorageError(f"Market data write failed: {e}") from e

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Database ping failed: {e}") from e
