"""Configuration system using pydantic-settings with environment variable loading."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Binance USD-M futures public REST settings."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    quote_asset: str = "USDT"  # only symbols ending with this suffix are tracked
    request_timeout_seconds: float = 15.0
    fetch_concurrency: int = 3  # max in-flight kline requests per batch
    user_agent: str = "klinefeed/0.1"


class StorageSettings(BaseSettings):
    """Kline table location and row identity settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/klines.db"
    market_type: str = "F"  # futures
    canonical_timeframe: str = "1h"  # timeframe queried to decide if a symbol is known


class IngestionSettings(BaseSettings):
    """Fetch sizing for backfill and decoding precision."""

    model_config = SettingsConfigDict(env_prefix="INGEST_")

    backfill_limit: int = 1000  # candles per symbol for never-seen symbols
    # Significant digits kept for the volume field. None keeps the wire value;
    # 7 matches a single-precision parse.
    volume_digits: int | None = None


class CadenceSettings(BaseSettings):
    """One periodic refresh cadence bound to a candle timeframe.

    Subclasses pin the defaults and the environment prefix. Retention
    horizons are sized so every timeframe spans a similar wall-clock history.
    """

    name: str
    timeframe: str
    cron: str
    refresh_limit: int = 2  # current bucket plus the one that just closed
    retention_hours: int
    refresh_symbols: bool = False
    enabled: bool = True


class HourlyCadenceSettings(CadenceSettings):
    """Cadence A: hourly candles, refreshed at the top of every hour."""

    model_config = SettingsConfigDict(env_prefix="CADENCE_1H_")

    name: str = "hourly"
    timeframe: str = "1h"
    cron: str = "0 * * * *"
    retention_hours: int = 999
    refresh_symbols: bool = True


class FourHourCadenceSettings(CadenceSettings):
    """Cadence B: 4-hour candles, refreshed every fourth hour."""

    model_config = SettingsConfigDict(env_prefix="CADENCE_4H_")

    name: str = "four_hourly"
    timeframe: str = "4h"
    cron: str = "0 */4 * * *"
    retention_hours: int = 3999


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production
    exchange: ExchangeSettings = ExchangeSettings()
    storage: StorageSettings = StorageSettings()
    ingestion: IngestionSettings = IngestionSettings()
    hourly: HourlyCadenceSettings = HourlyCadenceSettings()
    four_hourly: FourHourCadenceSettings = FourHourCadenceSettings()

    def cadences(self) -> list[CadenceSettings]:
        """Return enabled cadences in backfill order."""
        return [c for c in (self.hourly, self.four_hourly) if c.enabled]
