"""
Base origin client interface.
"""

from abc import ABC, abstractmethod

from marketdata.datasource.models import DataPeriod, MarketDataRecord


class BaseOriginClient(ABC):
    """
    Abstract base class for upstream market data providers.

    All origin clients should:
    - Return MarketDataRecord with a normalized location
    - Raise OriginError subclasses, never transport exceptions
    - Leave circuit breaking and caching to the caller
    """

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this origin."""
        ...

    @abstractmethod
    async def fetch(
        self, location: str, property_type: str, period: DataPeriod
    ) -> MarketDataRecord:
        """Fetch current market data for the key."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the origin is properly configured."""
        ...

    async def probe(self) -> bool:
        """Lightweight reachability check."""
        return True

    async def close(self) -> None:
        pass
