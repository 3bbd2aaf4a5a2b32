"""Daily -> History migration and History retention."""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from .market_hours import SERVICE_TZ, Market, market_for_exchange, service_today
from .models import AssetClass, HistoryRecord
from .stores import DailyStore, HistoryStore

logger = logging.getLogger(__name__)

MIGRATION_LAG_DAYS = 2
RETENTION_MONTHS = 3


def months_before(day: date, months: int) -> date:
    """``day`` shifted back by whole months, clamped to the target month's last day."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


@dataclass(frozen=True)
class AssetClassStores:
    """The two stores of one asset class and the markets its instruments trade on."""

    asset_class: AssetClass
    daily: DailyStore
    history: HistoryStore
    markets: tuple[Market, ...]


@dataclass
class MigrationReport:
    cutoff: date
    migrated: int = 0
    deleted: int = 0
    skipped_markets: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class RolloverScheduler:
    """Moves each instrument's last daily value into History and prunes old History.

    migrate() works on the date ``lag_days`` before today (Seoul), well clear of
    every market's session boundary. For each market that traded on that date,
    every instrument with daily rows in the market-local day gets one history
    row (unless it already has one) from its last row of the day, and that
    day's daily rows are then deleted whether or not a history row was written.
    """

    def __init__(
        self,
        classes: Sequence[AssetClassStores],
        lag_days: int = MIGRATION_LAG_DAYS,
        retention_months: int = RETENTION_MONTHS,
    ) -> None:
        self._classes = list(classes)
        self._lag_days = lag_days
        self._retention_months = retention_months

    def cutoff_date(self, now: datetime | None = None) -> date:
        return service_today(now) - timedelta(days=self._lag_days)

    def retention_cutoff(self, now: datetime | None = None) -> date:
        return months_before(service_today(now), self._retention_months)

    def migrate(self, now: datetime | None = None) -> MigrationReport:
        """Run the Daily -> History migration for the cutoff date."""
        now = now or datetime.now(SERVICE_TZ)
        report = MigrationReport(cutoff=self.cutoff_date(now))
        for stores in self._classes:
            for market in stores.markets:
                if not market.is_trading_day(report.cutoff):
                    logger.info(
                        "%s/%s closed on %s; leaving its daily rows alone",
                        stores.asset_class.value,
                        market.name,
                        report.cutoff,
                    )
                    report.skipped_markets.append(f"{stores.asset_class.value}/{market.name}")
                    continue
                self._migrate_market(stores, market, report)
        logger.info(
            "Migrated %s: %d history rows, %d daily rows deleted",
            report.cutoff,
            report.migrated,
            report.deleted,
        )
        return report

    def prune(self, now: datetime | None = None) -> dict[AssetClass, int]:
        """Delete history older than the retention window, per asset class."""
        cutoff = self.retention_cutoff(now)
        removed: dict[AssetClass, int] = {}
        for stores in self._classes:
            try:
                removed[stores.asset_class] = stores.history.delete_before(cutoff)
            except Exception:
                logger.exception("Pruning %s history failed", stores.asset_class.value)
                continue
        logger.info("Pruned history before %s: %s", cutoff, {k.value: v for k, v in removed.items()})
        return removed

    async def run_migration(self) -> None:
        await asyncio.to_thread(self.migrate)

    async def run_prune(self) -> None:
        await asyncio.to_thread(self.prune)

    # --- Internal ---

    def _migrate_market(self, stores: AssetClassStores, market: Market, report: MigrationReport) -> None:
        day = report.cutoff
        start, end = market.day_window(day)
        for code in stores.daily.distinct_codes(start, end):
            try:
                records = stores.daily.find_range(code, start, end)
                if not records:
                    continue
                # A store can mix markets (US and HK equities); each is handled in its own window.
                if market_for_exchange(records[-1].exchange_code) is not market:
                    continue

                if stores.history.exists(code, day):
                    logger.debug("History already has %s on %s", code, day)
                else:
                    stores.history.save(HistoryRecord.from_daily(records[-1], day))
                    report.migrated += 1
                report.deleted += stores.daily.delete_range(code, start, end)
            except Exception:
                logger.exception("Migrating %s for %s failed", code, day)
                report.failed.append(code)
