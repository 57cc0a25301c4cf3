"""Exchange client layer -- Binance futures public REST via ccxt."""

from klinefeed.exchange.binance_client import BinanceFuturesClient
from klinefeed.exchange.client import MarketDataClient
from klinefeed.exchange.types import FetchResult

__all__ = ["BinanceFuturesClient", "FetchResult", "MarketDataClient"]
