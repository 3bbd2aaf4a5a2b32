"""Tests for the trading-hours calendar."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from collector.market.market_hours import (
    FX,
    HKEX,
    KRX,
    US,
    is_open,
    market_for_exchange,
    service_today,
)

SEOUL = ZoneInfo("Asia/Seoul")
NEW_YORK = ZoneInfo("America/New_York")
HONG_KONG = ZoneInfo("Asia/Hong_Kong")
UTC = ZoneInfo("UTC")

# 2025-03-04 is a Tuesday; 2025-03-08 a Saturday.
TUESDAY = date(2025, 3, 4)
SATURDAY = date(2025, 3, 8)


def at(day, hour, minute, second=0, tz=SEOUL):
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=tz)


class TestKrx:
    """Korean session: 09:00-15:30 Seoul, both ends inclusive."""

    @pytest.mark.parametrize(
        "hour,minute,second,expected",
        [
            (8, 59, 59, False),
            (9, 0, 0, True),
            (12, 0, 0, True),
            (15, 30, 0, True),
            (15, 30, 1, False),
        ],
    )
    def test_session_bounds(self, hour, minute, second, expected):
        """Test the opening and closing instants."""
        assert KRX.is_open(at(TUESDAY, hour, minute, second)) is expected

    def test_closed_on_weekend(self):
        """Test that Saturday is closed even inside session hours."""
        assert KRX.is_open(at(SATURDAY, 10, 0)) is False

    def test_instant_in_other_timezone(self):
        """Test that the check converts to Seoul time first."""
        # 01:00 UTC = 10:00 Seoul
        assert KRX.is_open(at(TUESDAY, 1, 0, tz=UTC)) is True


class TestUs:
    """US session: 09:30-16:00 New York, both ends inclusive."""

    def test_session_bounds(self):
        """Test the opening and closing instants in New York time."""
        assert US.is_open(at(TUESDAY, 9, 29, 59, tz=NEW_YORK)) is False
        assert US.is_open(at(TUESDAY, 9, 30, tz=NEW_YORK)) is True
        assert US.is_open(at(TUESDAY, 16, 0, tz=NEW_YORK)) is True
        assert US.is_open(at(TUESDAY, 16, 0, 1, tz=NEW_YORK)) is False

    def test_open_seen_from_seoul(self):
        """Test the open at 23:30 Seoul (09:30 EST, before daylight saving)."""
        assert US.is_open(at(TUESDAY, 23, 30)) is True
        assert US.is_open(at(TUESDAY, 23, 29)) is False


class TestHkex:
    """Hong Kong: two end-exclusive sessions around a lunch break."""

    @pytest.mark.parametrize(
        "hour,minute,expected",
        [
            (10, 29, False),
            (10, 30, True),
            (12, 59, True),
            (13, 0, False),
            (13, 30, False),
            (14, 0, True),
            (16, 59, True),
            (17, 0, False),
        ],
    )
    def test_dual_session(self, hour, minute, expected):
        """Test both sessions and the lunch break."""
        assert HKEX.is_open(at(TUESDAY, hour, minute, tz=HONG_KONG)) is expected


class TestFx:
    """Currency pairs: whole UTC day, Monday to Friday."""

    def test_open_all_weekday(self):
        """Test midnight and late evening on a weekday."""
        assert FX.is_open(at(TUESDAY, 0, 0, tz=UTC)) is True
        assert FX.is_open(at(TUESDAY, 23, 59, 59, tz=UTC)) is True

    def test_closed_on_weekend(self):
        """Test that Saturday UTC is closed."""
        assert FX.is_open(at(SATURDAY, 12, 0, tz=UTC)) is False

    def test_trading_day(self):
        """Test the weekday calendar."""
        assert FX.is_trading_day(TUESDAY) is True
        assert FX.is_trading_day(SATURDAY) is False


class TestExchangeMapping:
    """Tests for exchange code -> market resolution."""

    @pytest.mark.parametrize(
        "code,market",
        [("NAS", US), ("NYS", US), ("AMS", US), ("HKS", HKEX), ("hks", HKEX), ("KRX", KRX), ("FX", FX)],
    )
    def test_known_codes(self, code, market):
        """Test each known exchange code."""
        assert market_for_exchange(code) is market

    def test_unknown_defaults_to_us(self):
        """Test that unknown or missing codes fall back to New York."""
        assert market_for_exchange("XYZ") is US
        assert market_for_exchange(None) is US


class TestDates:
    """Tests for market-local dates and day windows."""

    def test_trading_date_uses_market_timezone(self):
        """Test that 05:00 Seoul on Wednesday is still Tuesday in New York."""
        instant = at(date(2025, 3, 5), 5, 0)
        assert US.trading_date(instant) == TUESDAY
        assert KRX.trading_date(instant) == date(2025, 3, 5)

    def test_day_window(self):
        """Test that a day window spans local midnight to midnight."""
        start, end = US.day_window(TUESDAY)
        assert start == at(TUESDAY, 0, 0, tz=NEW_YORK)
        assert end == at(date(2025, 3, 5), 0, 0, tz=NEW_YORK)
        assert (end - start).total_seconds() == 24 * 3600

    def test_service_today(self):
        """Test that the service date is the Seoul date."""
        assert service_today(at(TUESDAY, 16, 0, tz=UTC)) == date(2025, 3, 5)

    def test_is_open_wrapper(self):
        """Test the module-level convenience wrapper."""
        assert is_open(KRX, at(TUESDAY, 10, 0)) is True
        assert is_open(KRX, at(SATURDAY, 10, 0)) is False
