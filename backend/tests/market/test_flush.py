"""Tests for change detection and the FlushScheduler."""

import asyncio
import time
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from collector.market.buffer import LatestValue, RealTimeBuffer
from collector.market.flush import (
    DailyWriter,
    FlushScheduler,
    derived_change_rate,
    needs_write,
    trading_date_of,
)
from collector.market.market_hours import FX, KRX
from collector.market.models import DailyRecord
from collector.market.scheduler import PeriodicJob, Scheduler
from collector.market.stores import InMemoryDailyStore

SEOUL = ZoneInfo("Asia/Seoul")
NEW_YORK = ZoneInfo("America/New_York")
OPEN = datetime(2025, 3, 4, 10, 0, tzinfo=SEOUL)
CLOSED = datetime(2025, 3, 4, 18, 0, tzinfo=SEOUL)


class SlowDailyStore(InMemoryDailyStore):
    """Daily store whose lookups take long enough for two flushes to interleave."""

    def latest(self, code):
        time.sleep(0.2)
        return super().latest(code)


class TestNeedsWrite:
    """The change-detection policy."""

    def test_first_observation(self, make_observation):
        """Test that an instrument with no stored rows is written."""
        assert needs_write(None, make_observation()) is True

    def test_same_day_same_price(self, make_observation):
        """Test that an unchanged price on the same date is not written."""
        last = DailyRecord.from_observation(make_observation())
        obs = make_observation(at=OPEN + timedelta(minutes=5))
        assert needs_write(last, obs) is False

    def test_same_day_new_price(self, make_observation):
        """Test that a price change is written."""
        last = DailyRecord.from_observation(make_observation(price="72000"))
        assert needs_write(last, make_observation(price="72100")) is True

    def test_new_day_same_price(self, make_observation):
        """Test that the first observation of a new date is written even if unchanged."""
        last = DailyRecord.from_observation(make_observation())
        obs = make_observation(at=OPEN + timedelta(days=1))
        assert needs_write(last, obs) is True

    def test_trading_date_uses_market_timezone(self, make_observation):
        """Test that US rows either side of Seoul midnight share a New York date."""
        before = make_observation(code="TSLA", price="188.5", exchange_code="NAS",
                                  at=datetime(2025, 3, 4, 23, 40, tzinfo=SEOUL))
        after = make_observation(code="TSLA", price="188.5", exchange_code="NAS",
                                 at=datetime(2025, 3, 5, 0, 20, tzinfo=SEOUL))
        assert needs_write(DailyRecord.from_observation(before), after) is False

    def test_trading_date_of(self):
        """Test the exchange-to-date helper."""
        instant = datetime(2025, 3, 5, 5, 0, tzinfo=SEOUL)
        assert trading_date_of("NAS", instant).day == 4
        assert trading_date_of("KRX", instant).day == 5


class TestDerivedChangeRate:
    """Change rate computed against the previous stored price."""

    def test_rounds_half_up(self):
        """Test the 2dp half-up percentage."""
        assert derived_change_rate(Decimal("1380.00"), Decimal("1383.45")) == Decimal("0.25")
        assert derived_change_rate(Decimal("200"), Decimal("199.99")) == Decimal("-0.01")

    def test_no_base(self):
        """Test that a missing or zero base yields None."""
        assert derived_change_rate(None, Decimal("1")) is None
        assert derived_change_rate(Decimal("0"), Decimal("1")) is None


class TestDailyWriter:
    """Tests for DailyWriter.save_if_changed."""

    def test_writes_then_skips_duplicate(self, make_observation):
        """Test that a repeated price is stored once."""
        store = InMemoryDailyStore()
        writer = DailyWriter(store)
        assert writer.save_if_changed(make_observation()) is True
        assert writer.save_if_changed(make_observation(at=OPEN + timedelta(seconds=20))) is False
        assert len(store) == 1

    def test_derives_change_rate(self, make_observation):
        """Test that currency writers fill in the change rate."""
        store = InMemoryDailyStore()
        writer = DailyWriter(store, derive_change_rate=True)
        writer.save_if_changed(make_observation(code="USD/KRW", price="1380", exchange_code="FX"))
        writer.save_if_changed(
            make_observation(code="USD/KRW", price="1393.8", exchange_code="FX", at=OPEN + timedelta(minutes=4))
        )
        first, second = store.all()
        assert first.change_rate is None
        assert second.change_rate == Decimal("1.00")

    def test_keeps_upstream_change_rate(self, make_observation):
        """Test that stock writers keep the rate the upstream reported."""
        store = InMemoryDailyStore()
        DailyWriter(store).save_if_changed(make_observation(change_rate="-1.25"))
        assert store.latest("005930").change_rate == Decimal("-1.25")


class TestFlushScheduler:
    """Tests for one flush cycle."""

    def make(self, market=KRX):
        buffer = RealTimeBuffer()
        store = InMemoryDailyStore()
        return buffer, store, FlushScheduler(buffer, DailyWriter(store), market, name="test")

    def test_closed_market_is_a_no_op(self, make_observation):
        """Test that nothing is written or removed while the market is closed."""
        buffer, store, flush = self.make()
        buffer.put("005930", make_observation())
        assert flush.flush_once(CLOSED) == 0
        assert len(store) == 0
        assert len(buffer) == 1

    def test_written_entries_leave_the_buffer(self, make_observation):
        """Test that persisted entries are removed from the buffer."""
        buffer, store, flush = self.make()
        buffer.put("005930", make_observation())
        buffer.put("000660", make_observation(code="000660", price="178000"))
        assert flush.flush_once(OPEN) == 2
        assert len(store) == 2
        assert len(buffer) == 0

    def test_unchanged_entry_stays_buffered(self, make_observation):
        """Test that an entry the policy rejects stays for the next cycle."""
        buffer, store, flush = self.make()
        buffer.put("005930", make_observation())
        flush.flush_once(OPEN)
        repeat = make_observation(at=OPEN + timedelta(seconds=20))
        buffer.put("005930", repeat)

        assert flush.flush_once(OPEN + timedelta(seconds=20)) == 0
        assert buffer.get("005930") is repeat
        assert len(store) == 1

    def test_failure_is_isolated_per_key(self, make_observation):
        """Test that one failing save does not stop the others."""
        buffer = RealTimeBuffer()
        store = InMemoryDailyStore()
        writer = DailyWriter(store)
        original = writer.save_if_changed

        def flaky(obs):
            if obs.instrument_code == "000660":
                raise RuntimeError("disk full")
            return original(obs)

        writer.save_if_changed = flaky
        flush = FlushScheduler(buffer, writer, KRX)
        buffer.put("000660", make_observation(code="000660"))
        buffer.put("005930", make_observation())

        assert flush.flush_once(OPEN) == 1
        assert "000660" in buffer
        assert "005930" not in buffer

    def test_flushes_latest_value_holder(self, make_observation):
        """Test that the single-slot holder flushes the same way."""
        holder = LatestValue()
        store = InMemoryDailyStore()
        flush = FlushScheduler(holder, DailyWriter(store, derive_change_rate=True), FX)
        holder.set(make_observation(code="EUR/USD", price="1.0812", exchange_code="FX"))
        assert flush.flush_once(OPEN) == 1
        assert holder.get() is None
        assert store.latest("EUR/USD").price == Decimal("1.0812")

    @pytest.mark.asyncio
    async def test_run_uses_worker_thread(self):
        """Test that run() performs one cycle."""
        buffer, _, flush = self.make()
        flush.flush_once = MagicMock(return_value=0)
        await flush.run()
        flush.flush_once.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_manual_run_waits_for_scheduled_run(self, make_observation):
        """Test that two runs of the flush job never write one observation twice."""
        buffer = RealTimeBuffer()
        store = SlowDailyStore()
        market = MagicMock()
        market.is_open.return_value = True
        flush = FlushScheduler(buffer, DailyWriter(store), market, name="korean")
        scheduler = Scheduler()
        job = scheduler.add(PeriodicJob("korean_flush", flush.run, 20))
        buffer.put("005930", make_observation(price="72100"))

        await asyncio.gather(scheduler.run_now("korean_flush"), scheduler.run_now("korean_flush"))

        assert len(store) == 1
        assert len(buffer) == 0
        assert job.runs == 2

