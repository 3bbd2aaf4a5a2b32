"""Change-detecting persistence of buffered observations into the Daily store."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from .market_hours import SERVICE_TZ, Market, market_for_exchange
from .models import RATE_QUANTUM, DailyRecord, Observation
from .stores import DailyStore

logger = logging.getLogger(__name__)


class Drainable(Protocol):
    """What the FlushScheduler needs from a buffer (RealTimeBuffer or LatestValue)."""

    def drain_all(self) -> list[tuple[str, Observation]]: ...

    def remove(self, key: str, observation: Observation | None = None) -> bool: ...


def trading_date_of(exchange_code: str | None, instant: datetime) -> date:
    """Calendar date of ``instant`` in the market the exchange belongs to."""
    return market_for_exchange(exchange_code).trading_date(instant)


def needs_write(last: DailyRecord | None, observation: Observation) -> bool:
    """The change-detection policy.

    A new daily row is written for the first observation of an instrument, the
    first observation of a new trading date, or a price change. Anything else
    would duplicate the last stored row.
    """
    if last is None:
        return True
    if trading_date_of(last.exchange_code, last.observed_at) != trading_date_of(
        observation.exchange_code, observation.observed_at
    ):
        return True
    return last.price != observation.price


def derived_change_rate(previous: Decimal | None, price: Decimal) -> Decimal | None:
    """Percent change from ``previous`` to ``price``, 2dp half-up. None without a usable base."""
    if previous is None or previous == 0:
        return None
    return ((price - previous) * 100 / previous).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


class DailyWriter:
    """Applies the change-detection policy in front of a DailyStore.

    With ``derive_change_rate`` set (currency pairs, whose providers send no
    change figure), the stored change rate is computed against the last stored
    price.
    """

    def __init__(self, store: DailyStore, derive_change_rate: bool = False) -> None:
        self._store = store
        self._derive_change_rate = derive_change_rate

    @property
    def store(self) -> DailyStore:
        return self._store

    def save_if_changed(self, observation: Observation) -> bool:
        """Persist ``observation`` if the policy calls for it. Returns True if a row was written.

        Store errors propagate; callers isolate them per instrument.
        """
        last = self._store.latest(observation.instrument_code)
        if not needs_write(last, observation):
            logger.debug(
                "No price change for %s (%s); not stored",
                observation.instrument_code,
                observation.price,
            )
            return False

        if self._derive_change_rate:
            observation = dataclasses.replace(
                observation,
                change_rate=derived_change_rate(last.price if last else None, observation.price),
            )
        self._store.save(DailyRecord.from_observation(observation))
        logger.info(
            "Stored %s at %s: %s",
            observation.instrument_code,
            observation.observed_at.isoformat(),
            observation.price,
        )
        return True


class FlushScheduler:
    """Drains one buffer into the Daily store on every tick while its market is open.

    Entries that were written are removed from the buffer. Entries the policy
    rejected stay buffered and are compared again next tick.
    """

    def __init__(
        self,
        buffer: Drainable,
        writer: DailyWriter,
        market: Market,
        name: str = "flush",
    ) -> None:
        self._buffer = buffer
        self._writer = writer
        self._market = market
        self._name = name

    def flush_once(self, now: datetime | None = None) -> int:
        """Run one flush cycle. Returns the number of rows written."""
        now = now or datetime.now(SERVICE_TZ)
        if not self._market.is_open(now):
            logger.info("[%s] %s closed; skipping flush", self._name, self._market.name)
            return 0

        written = 0
        for key, observation in self._buffer.drain_all():
            try:
                if self._writer.save_if_changed(observation):
                    self._buffer.remove(key, observation)
                    written += 1
            except Exception:
                logger.exception("[%s] Failed to store %s", self._name, key)
        if written:
            logger.info("[%s] Flushed %d entries", self._name, written)
        return written

    async def run(self) -> None:
        """Scheduler entry point: one cycle on a worker thread."""
        await asyncio.to_thread(self.flush_once)
