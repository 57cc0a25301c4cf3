"""Ingestion orchestrator -- startup backfill plus periodic refresh cadences.

Startup:
  1. FETCH: symbol universe from the exchange
  2. DIFF: against symbols already persisted for the canonical timeframe
  3. BACKFILL: large-window fetch + one upsert batch per tracked timeframe,
     for new symbols only

Each cadence (one per timeframe, on its own cron expression):
  1. SNAPSHOT: the in-memory symbol universe
  2. REFRESH: small-window fetch + one upsert batch
  3. PRUNE: candles older than the cadence's retention horizon
  4. (optional) RESCAN: replace the universe from the exchange

If the startup symbol fetch fails, the first successful RESCAN performs the
startup DIFF and BACKFILL. After that, symbols that appear during a RESCAN
join the refresh set but are never backfilled; they are logged and tracked
as pending.

Persistence failures (PersistenceError) are fatal and propagate out of
start(). Everything else degrades to log lines.
"""

from __future__ import annotations

from klinefeed.config import AppSettings, CadenceSettings
from klinefeed.data.reconciler import SymbolUniverse, diff
from klinefeed.data.store import KlineStore
from klinefeed.exchange.client import MarketDataClient
from klinefeed.logging import cycle_context, get_logger
from klinefeed.scheduler import CronScheduler

logger = get_logger(__name__)


class IngestionOrchestrator:
    """Drives the fetch/upsert/prune pipeline on startup and on each cadence.

    Args:
        settings: Application-wide settings.
        client: Market data client (soft-failing).
        store: Kline store (raises PersistenceError on failure).
        universe: Shared symbol universe, refreshed by cadences with
            ``refresh_symbols`` set.
        scheduler: Cron runner the cadences are registered on.
    """

    def __init__(
        self,
        settings: AppSettings,
        client: MarketDataClient,
        store: KlineStore,
        universe: SymbolUniverse,
        scheduler: CronScheduler,
    ) -> None:
        self._settings = settings
        self._client = client
        self._store = store
        self._universe = universe
        self._scheduler = scheduler
        self._pending_backfill: set[str] = set()
        self._reconciled = False

    @property
    def universe(self) -> SymbolUniverse:
        return self._universe

    @property
    def pending_backfill(self) -> frozenset[str]:
        """Symbols listed after startup that have only refresh-window history."""
        return frozenset(self._pending_backfill)

    async def start(self) -> None:
        """Run the startup backfill, then the cadences until stopped."""
        logger.info(
            "orchestrator_starting",
            market_type=self._settings.storage.market_type,
            cadences=[c.name for c in self._settings.cadences()],
        )
        await self.startup()

        for cadence in self._settings.cadences():
            self._scheduler.add_job(
                cadence.name,
                cadence.cron,
                self._cadence_callback(cadence),
            )

        await self._scheduler.start()
        try:
            await self._scheduler.wait()
        finally:
            logger.info("orchestrator_stopped")

    async def stop(self) -> None:
        """Stop scheduling new cadence runs and wait for in-flight ones."""
        logger.info("orchestrator_stopping_gracefully")
        await self._scheduler.stop()

    async def startup(self) -> list[str]:
        """Backfill every tracked timeframe for symbols with no stored history.

        An empty symbol fetch leaves startup unreconciled; the first
        non-empty universe refresh then performs the backfill instead.
        Returns the symbols that were backfilled.
        """
        result = await self._client.fetch_symbols()
        if not result.items:
            logger.warning(
                "startup_symbol_fetch_empty",
                warnings=len(result.warnings),
                note="Backfill deferred to the first successful universe refresh.",
            )
            return []

        await self._universe.replace(result.items)
        return await self._reconcile(result.items)

    async def run_cadence(self, cadence: CadenceSettings) -> int:
        """Refresh, prune and optionally rescan for one cadence.

        Returns the number of candles upserted.
        """
        with cycle_context(cadence=cadence.name, timeframe=cadence.timeframe):
            symbols = self._universe.snapshot()
            logger.info("cadence_started", symbols=len(symbols))

            batches = await self._client.fetch_candles_many(
                symbols, cadence.timeframe, cadence.refresh_limit
            )
            written = await self._store.upsert_batch(
                self._settings.storage.market_type, cadence.timeframe, batches
            )
            await self._store.prune_older_than(cadence.timeframe, cadence.retention_hours)

            if cadence.refresh_symbols:
                await self.refresh_universe()

            logger.info("cadence_complete", candles=written)
            return written

    async def refresh_universe(self) -> list[str]:
        """Replace the in-memory universe from the exchange.

        An empty fetch (transport failure) keeps the previous universe. If
        startup never reconciled, this refresh diffs against the store and
        backfills. Otherwise symbols new to the universe are only refreshed
        from now on: their stored history starts here, and a restart will
        see them as known. Returns the symbols new to the universe.
        """
        result = await self._client.fetch_symbols()
        if not result.items:
            logger.warning(
                "symbol_refresh_skipped",
                kept=len(self._universe),
                warnings=len(result.warnings),
            )
            return []

        added = await self._universe.replace(result.items)
        if not self._reconciled:
            await self._reconcile(result.items)
        elif added:
            self._pending_backfill.update(added)
            logger.warning(
                "symbols_pending_backfill",
                symbols=sorted(added),
                note="Refreshed on each cadence; history starts from this listing.",
            )
        logger.info("symbol_universe_refreshed", symbols=len(self._universe), added=len(added))
        return added

    async def _reconcile(self, remote: list[str]) -> list[str]:
        persisted = await self._store.get_known_symbols(
            self._settings.storage.canonical_timeframe
        )
        new_symbols = diff(remote, persisted)
        logger.info(
            "symbol_universe_reconciled",
            remote=len(remote),
            persisted=len(persisted),
            new=len(new_symbols),
        )

        limit = self._settings.ingestion.backfill_limit
        if new_symbols:
            for cadence in self._settings.cadences():
                with cycle_context(phase="backfill", timeframe=cadence.timeframe):
                    batches = await self._client.fetch_candles_many(
                        new_symbols, cadence.timeframe, limit
                    )
                    await self._store.upsert_batch(
                        self._settings.storage.market_type, cadence.timeframe, batches
                    )
            logger.info("backfill_complete", symbols=len(new_symbols), limit=limit)

        self._reconciled = True
        return new_symbols

    def _cadence_callback(self, cadence: CadenceSettings):  # type: ignore[no-untyped-def]
        async def _run() -> None:
            await self.run_cadence(cadence)

        return _run
