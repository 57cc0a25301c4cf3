"""Shared test fixtures for the kline feed."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from klinefeed.config import (
    AppSettings,
    ExchangeSettings,
    FourHourCadenceSettings,
    HourlyCadenceSettings,
    IngestionSettings,
    StorageSettings,
)
from klinefeed.data.database import KlineDatabase
from klinefeed.data.models import Candle, decode_candle
from klinefeed.data.store import KlineStore

# 2024-01-01 00:00:00 UTC
BASE_OPEN_MS = 1_704_067_200_000
HOUR_MS = 3_600_000


def kline_row(
    open_ms: int = BASE_OPEN_MS,
    open_: str = "42000.10",
    high: str = "42100.00",
    low: str = "41900.50",
    close: str = "42050.25",
    volume: str = "1234.567",
    interval_ms: int = HOUR_MS,
    trades: int = 5321,
) -> list:
    """Build a Binance /fapi/v1/klines row as it arrives on the wire."""
    return [
        open_ms,
        open_,
        high,
        low,
        close,
        volume,
        open_ms + interval_ms - 1,
        "51890123.45678900",
        trades,
        "600.123",
        "25200000.5",
        "0",
    ]


def make_candle(open_ms: int = BASE_OPEN_MS, **overrides: str) -> Candle:
    """Decode a wire row into a Candle for store/orchestrator tests."""
    decoded = decode_candle(kline_row(open_ms=open_ms, **overrides))
    assert decoded.value is not None and not decoded.warnings
    return decoded.value


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    """AppSettings with test defaults (temp database, debug logging)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(quote_asset="USDT", fetch_concurrency=2),
        storage=StorageSettings(db_path=str(tmp_path / "klines.db")),
        ingestion=IngestionSettings(backfill_limit=1000),
        hourly=HourlyCadenceSettings(),
        four_hourly=FourHourCadenceSettings(),
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected KlineDatabase on a temp file, closed after the test."""
    db = KlineDatabase(str(tmp_path / "klines.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database: KlineDatabase) -> KlineStore:
    return KlineStore(database)


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed 'now': 2024-03-01 12:00:00 UTC."""
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
