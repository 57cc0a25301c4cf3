"""Async SQLite database manager for the kline table.

Uses aiosqlite for non-blocking database operations with WAL mode so the
two cadences can read while the other one writes.
"""

import os
import sqlite3
from typing import Self

import aiosqlite

from klinefeed.exceptions import PersistenceError
from klinefeed.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

# Decimal columns are TEXT to preserve NUMERIC(32, 8) precision; instants are
# epoch milliseconds.
_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS klines (
    open_time_ms INTEGER NOT NULL,
    symbol TEXT NOT NULL,
    market_type TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    open TEXT NOT NULL,
    high TEXT NOT NULL,
    low TEXT NOT NULL,
    close TEXT NOT NULL,
    volume TEXT,
    close_time_ms INTEGER,
    quote_volume TEXT,
    trade_count INTEGER,
    taker_buy_base_volume TEXT,
    taker_buy_quote_volume TEXT,
    ignore INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (open_time_ms, symbol, market_type, timeframe)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_klines_timeframe_time
    ON klines(timeframe, open_time_ms);

CREATE INDEX IF NOT EXISTS idx_klines_timeframe_symbol
    ON klines(timeframe, symbol);
"""


class KlineDatabase:
    """Async SQLite connection manager for the kline table.

    Manages database lifecycle including schema creation, WAL mode
    configuration, and clean resource cleanup. Any failure while opening
    or migrating is raised as PersistenceError.

    Usage:
        async with KlineDatabase("data/klines.db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/klines.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and create the schema.

        Creates the parent directory if it does not exist. Transactions are
        managed explicitly by the store (isolation_level=None).
        """
        try:
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

            self._connection = await aiosqlite.connect(
                self._db_path, isolation_level=None
            )
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._create_tables()
            await self._ensure_schema_version()
        except (sqlite3.Error, OSError) as e:
            logger.error("kline_db_connect_failed", db_path=self._db_path, error=str(e))
            await self.close()
            raise PersistenceError(f"cannot open kline database {self._db_path}: {e}") from e

        logger.info("kline_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("kline_db_closed", db_path=self._db_path)

    async def _create_tables(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
