"""Abstract market data client interface.

Defines the contract the ingestion pipeline depends on, keeping the
Binance-specific transport isolated in the concrete implementation.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from klinefeed.data.models import Candle
from klinefeed.exchange.types import FetchResult


class MarketDataClient(ABC):
    """Abstract base class for read-only market data clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying HTTP session."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying HTTP session."""
        ...

    @abstractmethod
    async def fetch_symbols(self) -> FetchResult[list[str]]:
        """Return tradable symbols quoted in the tracked quote asset."""
        ...

    @abstractmethod
    async def fetch_candles(
        self, symbol: str, timeframe: str, limit: int
    ) -> FetchResult[list[Candle]]:
        """Return up to ``limit`` most recent candles for one symbol."""
        ...

    @abstractmethod
    async def fetch_candles_many(
        self, symbols: Sequence[str], timeframe: str, limit: int
    ) -> dict[str, list[Candle]]:
        """Fetch candles for many symbols; failed symbols map to an empty list."""
        ...
