"""Typed SQLite read/write abstraction for the kline table.

Provides KlineStore with the batch upsert writer, the retention pruner and
the read helpers used for symbol reconciliation. All SQL is isolated behind
this interface.

CRITICAL: Decimal values are stored as TEXT quantized to 8 fractional digits
and restored as Decimal on read.
"""

import asyncio
import sqlite3
import time
from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal, localcontext

from klinefeed.data.database import KlineDatabase
from klinefeed.data.models import Candle, datetime_to_ms, ms_to_datetime
from klinefeed.exceptions import PersistenceError
from klinefeed.logging import get_logger

logger = get_logger(__name__)

# NUMERIC(32, 8): 32 significant digits, 8 of them fractional
_PRECISION = 32
_SCALE = Decimal("0.00000001")

_UPSERT_SQL = (
    "INSERT INTO klines ("
    "open_time_ms, symbol, market_type, timeframe, "
    "open, high, low, close, volume, close_time_ms, quote_volume, trade_count, "
    "taker_buy_base_volume, taker_buy_quote_volume, ignore"
    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT (open_time_ms, symbol, market_type, timeframe) DO UPDATE SET "
    "open = excluded.open, high = excluded.high, low = excluded.low, "
    "close = excluded.close, volume = excluded.volume, "
    "close_time_ms = excluded.close_time_ms, quote_volume = excluded.quote_volume, "
    "trade_count = excluded.trade_count, "
    "taker_buy_base_volume = excluded.taker_buy_base_volume, "
    "taker_buy_quote_volume = excluded.taker_buy_quote_volume, "
    "ignore = excluded.ignore"
)

_HOUR_MS = 3_600_000


def _fixed(value: Decimal) -> str:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return format(value.quantize(_SCALE), "f")


def _row_params(
    candle: Candle, symbol: str, market_type: str, timeframe: str
) -> tuple:
    return (
        candle.open_time_ms,
        symbol,
        market_type,
        timeframe,
        _fixed(candle.open),
        _fixed(candle.high),
        _fixed(candle.low),
        _fixed(candle.close),
        _fixed(candle.volume),
        candle.close_time_ms,
        _fixed(candle.quote_volume),
        candle.trade_count,
        _fixed(candle.taker_buy_base_volume),
        _fixed(candle.taker_buy_quote_volume),
        0,
    )


class KlineStore:
    """Async SQLite store for candles keyed by (open time, symbol, market, timeframe).

    Wraps KlineDatabase with typed read/write methods. All SQL access goes
    through self._database.db (the aiosqlite Connection).

    Usage:
        async with KlineDatabase("data/klines.db") as database:
            store = KlineStore(database)
            written = await store.upsert_batch("F", "1h", {"BTCUSDT": candles})
    """

    def __init__(self, database: KlineDatabase) -> None:
        self._database = database
        # One transaction at a time on the shared connection
        self._write_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def upsert_batch(
        self,
        market_type: str,
        timeframe: str,
        candles_by_symbol: Mapping[str, Sequence[Candle]],
    ) -> int:
        """Upsert every candle of every symbol inside a single transaction.

        A conflicting key replaces all non-key columns with the new values,
        so re-ingesting overlapping windows is idempotent. Either all candles
        land or none do: on the first failing statement the transaction is
        rolled back, the offending candle is logged and PersistenceError is
        raised.

        Returns the number of candles written.
        """
        total = sum(len(c) for c in candles_by_symbol.values())
        if total == 0:
            return 0

        db = self._database.db
        async with self._write_lock:
            symbol: str | None = None
            candle: Candle | None = None
            try:
                await db.execute("BEGIN")
                for symbol, candles in candles_by_symbol.items():
                    for candle in candles:
                        await db.execute(
                            _UPSERT_SQL,
                            _row_params(candle, symbol, market_type, timeframe),
                        )
                await db.execute("COMMIT")
            except (sqlite3.Error, ArithmeticError) as e:
                logger.error(
                    "kline_upsert_failed",
                    market_type=market_type,
                    timeframe=timeframe,
                    symbol=symbol,
                    candle=repr(candle),
                    error=str(e),
                )
                await self._rollback()
                raise PersistenceError(
                    f"upsert of {total} {timeframe} candles failed at {symbol}: {e}"
                ) from e

        logger.info(
            "candles_upserted",
            market_type=market_type,
            timeframe=timeframe,
            symbols=len(candles_by_symbol),
            candles=total,
        )
        return total

    async def prune_older_than(
        self,
        timeframe: str,
        max_age_hours: int,
        now: datetime | None = None,
    ) -> int:
        """Delete candles of ``timeframe`` whose open time is older than the horizon.

        Rows of other timeframes are untouched regardless of age. Returns the
        number of rows deleted (informational only).
        """
        now_ms = datetime_to_ms(now) if now is not None else int(time.time() * 1000)
        cutoff_ms = now_ms - max_age_hours * _HOUR_MS

        db = self._database.db
        async with self._write_lock:
            try:
                cursor = await db.execute(
                    "DELETE FROM klines WHERE timeframe = ? AND open_time_ms < ?",
                    (timeframe, cutoff_ms),
                )
            except sqlite3.Error as e:
                logger.error("kline_prune_failed", timeframe=timeframe, error=str(e))
                raise PersistenceError(f"pruning {timeframe} candles failed: {e}") from e

        deleted = cursor.rowcount
        logger.info(
            "klines_pruned",
            timeframe=timeframe,
            max_age_hours=max_age_hours,
            cutoff=ms_to_datetime(cutoff_ms).isoformat(),
            deleted=deleted,
        )
        return deleted

    async def _rollback(self) -> None:
        try:
            await self._database.db.execute("ROLLBACK")
        except sqlite3.Error as e:
            # Already rolled back by SQLite on some constraint failures
            logger.debug("kline_rollback_noop", error=str(e))

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_known_symbols(self, timeframe: str) -> list[str]:
        """Return distinct symbols that have at least one candle at ``timeframe``."""
        try:
            cursor = await self._database.db.execute(
                "SELECT DISTINCT symbol FROM klines WHERE timeframe = ? ORDER BY symbol",
                (timeframe,),
            )
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("known_symbols_query_failed", timeframe=timeframe, error=str(e))
            raise PersistenceError(f"reading known symbols failed: {e}") from e
        return [row[0] for row in rows]

    async def get_candles(
        self,
        symbol: str,
        timeframe: str,
        market_type: str = "F",
    ) -> list[Candle]:
        """Query candles for one series ordered by open time ASC."""
        cursor = await self._database.db.execute(
            "SELECT open_time_ms, open, high, low, close, volume, close_time_ms, "
            "quote_volume, trade_count, taker_buy_base_volume, taker_buy_quote_volume "
            "FROM klines WHERE symbol = ? AND timeframe = ? AND market_type = ? "
            "ORDER BY open_time_ms ASC",
            (symbol, timeframe, market_type),
        )
        rows = await cursor.fetchall()
        return [
            Candle(
                open_time=ms_to_datetime(row[0]),
                open=Decimal(row[1]),
                high=Decimal(row[2]),
                low=Decimal(row[3]),
                close=Decimal(row[4]),
                volume=Decimal(row[5]),
                close_time=ms_to_datetime(row[6]),
                quote_volume=Decimal(row[7]),
                trade_count=row[8],
                taker_buy_base_volume=Decimal(row[9]),
                taker_buy_quote_volume=Decimal(row[10]),
            )
            for row in rows
        ]

    async def count_candles(self, timeframe: str | None = None) -> int:
        """Return the number of stored candles, optionally for one timeframe."""
        if timeframe is None:
            cursor = await self._database.db.execute("SELECT COUNT(*) FROM klines")
        else:
            cursor = await self._database.db.execute(
                "SELECT COUNT(*) FROM klines WHERE timeframe = ?", (timeframe,)
            )
        row = await cursor.fetchone()
        return row[0] if row else 0
