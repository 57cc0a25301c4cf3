"""Binance USD-M futures market data client via ccxt async.

Uses ccxt's raw implicit endpoints rather than the unified fetch_ohlcv so the
positional kline arrays (quote volume, trade count, taker volumes) reach the
decoder exactly as the exchange sent them.

Endpoints (host fapi.binance.com):
- GET /fapi/v1/ticker/24hr            symbol universe
- GET /fapi/v1/klines?symbol&interval&limit
"""

import asyncio
from collections.abc import Sequence

import ccxt.async_support as ccxt_async

from klinefeed.config import ExchangeSettings
from klinefeed.data.models import Candle, decode_candle
from klinefeed.data.reconciler import filter_by_quote
from klinefeed.exchange.client import MarketDataClient
from klinefeed.exchange.types import FetchResult
from klinefeed.logging import get_logger

logger = get_logger(__name__)


class BinanceFuturesClient(MarketDataClient):
    """Read-only Binance futures client with soft error handling.

    Transport failures (timeouts, DNS, HTTP 4xx/5xx mapped by ccxt) and
    malformed envelopes are logged and returned as warnings on an empty or
    partial FetchResult. Nothing is retried within a call.
    """

    def __init__(
        self,
        settings: ExchangeSettings,
        volume_digits: int | None = None,
        exchange: ccxt_async.binanceusdm | None = None,
    ) -> None:
        self._settings = settings
        self._volume_digits = volume_digits
        self._exchange = exchange or ccxt_async.binanceusdm(
            {
                "enableRateLimit": True,
                "timeout": int(settings.request_timeout_seconds * 1000),
                "headers": {"User-Agent": settings.user_agent},
            }
        )
        self._semaphore = asyncio.Semaphore(max(1, settings.fetch_concurrency))

    @property
    def exchange(self) -> ccxt_async.binanceusdm:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Nothing to preload: the raw endpoints need no market metadata."""
        logger.info(
            "binance_client_ready",
            quote_asset=self._settings.quote_asset,
            timeout_seconds=self._settings.request_timeout_seconds,
            concurrency=self._settings.fetch_concurrency,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        await self._exchange.close()
        logger.info("binance_client_closed")

    async def fetch_symbols(self) -> FetchResult[list[str]]:
        """Return symbols quoted in the tracked quote asset, in the order received."""
        try:
            payload = await self._exchange.fapiPublicGetTicker24hr()
        except ccxt_async.BaseError as e:
            logger.warning("symbol_fetch_failed", error=str(e), error_type=type(e).__name__)
            return FetchResult([], [f"symbol fetch failed: {e}"])

        if not isinstance(payload, list):
            logger.warning("symbol_payload_not_array", payload_type=type(payload).__name__)
            return FetchResult([], [f"ticker payload is not an array: {type(payload).__name__}"])

        warnings: list[str] = []
        names: list[str] = []
        for entry in payload:
            name = entry.get("symbol") if isinstance(entry, dict) else None
            if not isinstance(name, str):
                warnings.append(f"ticker entry without symbol: {entry!r}")
                continue
            names.append(name)

        if warnings:
            logger.warning("symbol_entries_skipped", skipped=len(warnings))

        symbols = filter_by_quote(names, self._settings.quote_asset)
        logger.debug(
            "fetched_symbols",
            listed=len(names),
            tracked=len(symbols),
            quote_asset=self._settings.quote_asset,
        )
        return FetchResult(symbols, warnings)

    async def fetch_candles(
        self, symbol: str, timeframe: str, limit: int
    ) -> FetchResult[list[Candle]]:
        """Return up to ``limit`` most recent candles for ``symbol``.

        Rows that cannot be decoded positionally are skipped; rows with a bad
        field keep that field at zero. Every problem is logged and returned
        as a warning.
        """
        params = {"symbol": symbol, "interval": timeframe, "limit": str(limit)}
        try:
            payload = await self._exchange.fapiPublicGetKlines(params)
        except ccxt_async.BaseError as e:
            logger.warning(
                "kline_fetch_failed",
                symbol=symbol,
                timeframe=timeframe,
                error=str(e),
                error_type=type(e).__name__,
            )
            return FetchResult([], [f"{symbol} {timeframe} kline fetch failed: {e}"])

        if not isinstance(payload, list):
            logger.warning(
                "kline_payload_not_array",
                symbol=symbol,
                timeframe=timeframe,
                payload_type=type(payload).__name__,
            )
            return FetchResult(
                [], [f"{symbol} kline payload is not an array: {type(payload).__name__}"]
            )

        candles: list[Candle] = []
        warnings: list[str] = []
        for row in payload:
            decoded = decode_candle(row, volume_digits=self._volume_digits)
            for warning in decoded.warnings:
                logger.warning(
                    "candle_field_unparseable",
                    symbol=symbol,
                    timeframe=timeframe,
                    detail=warning,
                )
            warnings.extend(f"{symbol}: {w}" for w in decoded.warnings)
            if decoded.value is not None:
                candles.append(decoded.value)

        return FetchResult(candles, warnings)

    async def fetch_candles_many(
        self, symbols: Sequence[str], timeframe: str, limit: int
    ) -> dict[str, list[Candle]]:
        """Fetch candles for many symbols with bounded concurrency.

        Keys follow the order of ``symbols``. A symbol whose fetch failed maps
        to an empty list, so the caller still sees it was attempted.
        """

        async def _one(symbol: str) -> list[Candle]:
            async with self._semaphore:
                result = await self.fetch_candles(symbol, timeframe, limit)
            return result.items

        batches = await asyncio.gather(*(_one(s) for s in symbols))
        by_symbol = dict(zip(symbols, batches))

        failed = sum(1 for b in batches if not b)
        logger.info(
            "candles_fetched",
            timeframe=timeframe,
            limit=limit,
            symbols=len(symbols),
            empty=failed,
            candles=sum(len(b) for b in batches),
        )
        return by_symbol
