"""Entry point for the kline feed.

Wires all components together and runs the orchestrator until SIGINT or
SIGTERM. A fatal persistence error ends the process with exit code 1; a
restart resumes from what is already stored.

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. KlineDatabase + KlineStore (persistence)
4. BinanceFuturesClient (market data)
5. SymbolUniverse (shared symbol snapshot)
6. CronScheduler (cadence trigger)
7. IngestionOrchestrator (startup backfill + cadences)
"""

import asyncio
import signal
import sys
from typing import Any

from klinefeed.config import AppSettings
from klinefeed.data.database import KlineDatabase
from klinefeed.data.reconciler import SymbolUniverse
from klinefeed.data.store import KlineStore
from klinefeed.exceptions import PersistenceError
from klinefeed.exchange.binance_client import BinanceFuturesClient
from klinefeed.logging import get_logger, setup_logging
from klinefeed.orchestrator import IngestionOrchestrator
from klinefeed.scheduler import CronScheduler


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Does NOT open the database or the HTTP session -- that happens in run().
    """
    database = KlineDatabase(settings.storage.db_path)
    store = KlineStore(database)
    client = BinanceFuturesClient(
        settings.exchange, volume_digits=settings.ingestion.volume_digits
    )
    universe = SymbolUniverse()
    scheduler = CronScheduler()
    orchestrator = IngestionOrchestrator(
        settings=settings,
        client=client,
        store=store,
        universe=universe,
        scheduler=scheduler,
    )
    return {
        "database": database,
        "store": store,
        "client": client,
        "universe": universe,
        "scheduler": scheduler,
        "orchestrator": orchestrator,
    }


def _setup_signal_handlers(orchestrator: IngestionOrchestrator) -> None:
    """Register SIGINT/SIGTERM to stop the orchestrator gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("klinefeed.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(orchestrator.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def run() -> None:
    """Run the kline feed until stopped."""
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("klinefeed.main")

    components = _build_components(settings)
    database: KlineDatabase = components["database"]
    client: BinanceFuturesClient = components["client"]
    orchestrator: IngestionOrchestrator = components["orchestrator"]

    _setup_signal_handlers(orchestrator)
    logger.info(
        "starting_kline_feed",
        db_path=settings.storage.db_path,
        quote_asset=settings.exchange.quote_asset,
        cadences={c.name: c.cron for c in settings.cadences()},
    )

    try:
        await database.connect()
        await client.connect()
        await orchestrator.start()
    finally:
        await client.close()
        await database.close()
        logger.info("kline_feed_stopped")


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(run())
    except PersistenceError as e:
        get_logger("klinefeed.main").critical("fatal_persistence_error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
