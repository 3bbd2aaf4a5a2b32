"""Wires buffers, stores, credentials, ingestors and jobs into one service."""

from __future__ import annotations

import logging
from datetime import time
from typing import Any

import httpx

from .buffer import LatestValue, RealTimeBuffer
from .config import Settings
from .credentials import ACCESS_TOKEN, APPROVAL_KEY, CredentialCache
from .duckdb_store import DuckDBDatabase
from .factory import create_korean_source
from .flush import DailyWriter, FlushScheduler
from .forex import CurrencyHistoryBackfill, CurrencyPoller, CurrencyStreamer, TwelveDataClient
from .instruments import KOREAN_STOCKS, STREAMED_PAIR
from .kis_quotes import GlobalStockPoller, KisQuoteClient
from .kis_stream import KoreanStockStreamer
from .market_hours import FX, HKEX, KRX, SERVICE_TZ, US
from .models import AssetClass, Observation
from .rollover import AssetClassStores, RolloverScheduler
from .scheduler import DailyJob, Job, PeriodicJob, Scheduler
from .stores import DailyStore, HistoryStore, InMemoryDailyStore, InMemoryHistoryStore

logger = logging.getLogger(__name__)

MIGRATION_AT = time(7, 0)
PRUNE_AT = time(7, 10)
BACKFILL_AT = time(6, 0)
SUPERVISE_INTERVAL = 60.0


class CollectorService:
    """Owns every long-lived collector component.

    Credential-dependent parts are only built when their keys are configured:
    without broker keys the Korean source is the simulator and the foreign
    poll and currency backfill jobs are absent; without a currency key the
    currency poll and stream are absent.
    """

    def __init__(self, settings: Settings, scheduler: Scheduler | None = None) -> None:
        self.settings = settings
        self.scheduler = scheduler or Scheduler()
        self._http = httpx.AsyncClient(timeout=10.0)

        self.korean_buffer = RealTimeBuffer()
        self.forex_latest = LatestValue()

        self.db: DuckDBDatabase | None = None
        self.daily_stores: dict[AssetClass, DailyStore] = {}
        self.history_stores: dict[AssetClass, HistoryStore] = {}
        self._build_stores()

        self.korean_writer = DailyWriter(self.daily_stores[AssetClass.KOREAN])
        self.global_writer = DailyWriter(self.daily_stores[AssetClass.GLOBAL])
        self.forex_writer = DailyWriter(self.daily_stores[AssetClass.FOREX], derive_change_rate=True)

        self.approval_keys: CredentialCache | None = None
        self.access_tokens: CredentialCache | None = None
        self.quotes: KisQuoteClient | None = None
        self.global_poller: GlobalStockPoller | None = None
        self.forex_backfill: CurrencyHistoryBackfill | None = None
        if settings.has_kis_credentials:
            self._build_broker_clients()

        self.korean_source = create_korean_source(self.korean_buffer, settings, self.approval_keys)
        self.korean_flush = FlushScheduler(self.korean_buffer, self.korean_writer, KRX, name="korean")

        self.twelvedata: TwelveDataClient | None = None
        self.currency_poller: CurrencyPoller | None = None
        self.currency_streamer: CurrencyStreamer | None = None
        self.forex_flush: FlushScheduler | None = None
        if settings.has_twelvedata_key:
            self._build_currency_clients()

        self.rollover = RolloverScheduler(
            [
                AssetClassStores(
                    AssetClass.KOREAN,
                    self.daily_stores[AssetClass.KOREAN],
                    self.history_stores[AssetClass.KOREAN],
                    (KRX,),
                ),
                AssetClassStores(
                    AssetClass.GLOBAL,
                    self.daily_stores[AssetClass.GLOBAL],
                    self.history_stores[AssetClass.GLOBAL],
                    (US, HKEX),
                ),
                AssetClassStores(
                    AssetClass.FOREX,
                    self.daily_stores[AssetClass.FOREX],
                    self.history_stores[AssetClass.FOREX],
                    (FX,),
                ),
            ]
        )
        self._register_jobs()

    # --- Lifecycle ---

    async def start(self) -> None:
        await self.korean_source.start(list(KOREAN_STOCKS))
        if self.currency_streamer is not None:
            await self.currency_streamer.start([STREAMED_PAIR])
        await self.scheduler.start()
        logger.info("Collector started with jobs: %s", ", ".join(j.name for j in self.scheduler.jobs))

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.korean_source.stop()
        if self.currency_streamer is not None:
            await self.currency_streamer.stop()
        await self._http.aclose()
        if self.db is not None:
            self.db.close()
        logger.info("Collector stopped")

    # --- Operations ---

    async def restart_korean(self) -> bool:
        return await self.korean_source.restart()

    async def supervise_streams(self) -> None:
        """Re-open streaming sessions that ended while their market is open."""
        if isinstance(self.korean_source, KoreanStockStreamer):
            await self.korean_source.ensure_running()
        if self.currency_streamer is not None:
            await self.currency_streamer.ensure_running()

    async def run_job(self, name: str) -> Job:
        """Run a job now. Raises KeyError for unknown names."""
        return await self.scheduler.run_now(name)

    def buffer_snapshot(self, asset_class: AssetClass) -> dict[str, Observation]:
        if asset_class is AssetClass.KOREAN:
            return self.korean_buffer.snapshot()
        if asset_class is AssetClass.FOREX:
            return self.forex_latest.snapshot()
        # Foreign quotes go straight to the writer; nothing is buffered.
        return {}

    def status(self) -> dict[str, Any]:
        return {
            "korean_source": type(self.korean_source).__name__,
            "korean_connected": self.korean_source.is_connected,
            "korean_codes": self.korean_source.get_codes(),
            "currency_connected": (
                self.currency_streamer.is_connected if self.currency_streamer else None
            ),
            "buffers": {
                AssetClass.KOREAN.value: len(self.korean_buffer),
                AssetClass.FOREX.value: len(self.forex_latest),
            },
            "storage": "duckdb" if self.db is not None else "memory",
            "scheduler_running": self.scheduler.running,
            "jobs": [job.describe() for job in self.scheduler.jobs],
        }

    # --- Internal ---

    def _build_stores(self) -> None:
        if self.settings.db_path:
            self.db = DuckDBDatabase(self.settings.db_path)
            for asset_class in AssetClass:
                self.daily_stores[asset_class] = self.db.daily_store(asset_class)
                self.history_stores[asset_class] = self.db.history_store(asset_class)
            return
        logger.info("COLLECTOR_DB_PATH not set; using in-memory stores")
        for asset_class in AssetClass:
            self.daily_stores[asset_class] = InMemoryDailyStore()
            self.history_stores[asset_class] = InMemoryHistoryStore()

    def _build_broker_clients(self) -> None:
        s = self.settings
        common = dict(
            base_url=s.kis_rest_url,
            app_key=s.kis_app_key,
            app_secret=s.kis_app_secret,
            client=self._http,
        )
        self.approval_keys = CredentialCache(APPROVAL_KEY, **common)
        self.access_tokens = CredentialCache(ACCESS_TOKEN, **common)
        self.quotes = KisQuoteClient(
            s.kis_rest_url,
            s.kis_app_key,
            s.kis_app_secret,
            self.access_tokens,
            client=self._http,
        )
        self.global_poller = GlobalStockPoller(self.quotes, self.global_writer, delay=s.quote_delay)
        self.forex_backfill = CurrencyHistoryBackfill(
            self.quotes,
            self.daily_stores[AssetClass.FOREX],
            self.history_stores[AssetClass.FOREX],
        )

    def _build_currency_clients(self) -> None:
        s = self.settings
        self.twelvedata = TwelveDataClient(s.twelvedata_rest_url, s.twelvedata_api_key, client=self._http)
        self.currency_poller = CurrencyPoller(self.twelvedata, self.forex_writer)
        self.currency_streamer = CurrencyStreamer(self.forex_latest, s.twelvedata_ws_url, s.twelvedata_api_key)
        self.forex_flush = FlushScheduler(self.forex_latest, self.forex_writer, FX, name="forex")

    def _register_jobs(self) -> None:
        s = self.settings
        add = self.scheduler.add
        add(PeriodicJob("korean_flush", self.korean_flush.run, s.flush_interval))
        if self.global_poller is not None:
            add(PeriodicJob("global_poll", self.global_poller.run, s.global_poll_interval, run_at_start=True))
        if self.currency_poller is not None:
            add(PeriodicJob("forex_poll", self.currency_poller.run, s.fx_interval, run_at_start=True))
        if self.forex_flush is not None:
            add(PeriodicJob("forex_flush", self.forex_flush.run, s.fx_interval))
        add(DailyJob("migration", self.rollover.run_migration, MIGRATION_AT, SERVICE_TZ))
        add(DailyJob("prune", self.rollover.run_prune, PRUNE_AT, SERVICE_TZ))
        if self.forex_backfill is not None:
            add(DailyJob("forex_backfill", self.forex_backfill.run, BACKFILL_AT, SERVICE_TZ))
        if s.stream_supervise:
            add(PeriodicJob("stream_supervisor", self.supervise_streams, SUPERVISE_INTERVAL))
