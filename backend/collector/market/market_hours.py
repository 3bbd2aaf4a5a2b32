"""Trading-hours calendar for the markets the collector follows.

Every check is a pure function of the instant passed in. Nothing here touches
the network or the clock, and nothing raises for a valid datetime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

# Dates used for scheduling and rollover are Seoul dates.
SERVICE_TZ = ZoneInfo("Asia/Seoul")

WEEKDAYS = frozenset(range(5))  # Monday=0 .. Friday=4


@dataclass(frozen=True)
class Session:
    """One continuous trading interval in a market's local time."""

    start: time
    end: time
    end_inclusive: bool = True

    def contains(self, t: time) -> bool:
        if t < self.start:
            return False
        return t <= self.end if self.end_inclusive else t < self.end


@dataclass(frozen=True)
class Market:
    """A market's timezone, open weekdays and daily sessions."""

    name: str
    tz: ZoneInfo
    sessions: tuple[Session, ...]
    weekdays: frozenset[int] = field(default=WEEKDAYS)

    def is_open(self, now: datetime) -> bool:
        """True if ``now`` falls inside one of today's sessions.

        Naive datetimes are interpreted as system local time.
        """
        local = now.astimezone(self.tz)
        if local.weekday() not in self.weekdays:
            return False
        t = local.time()
        return any(session.contains(t) for session in self.sessions)

    def is_trading_day(self, day: date) -> bool:
        """True if the market trades at all on ``day`` (its own calendar)."""
        return day.weekday() in self.weekdays

    def trading_date(self, instant: datetime) -> date:
        """The market-local calendar date of ``instant``."""
        return instant.astimezone(self.tz).date()

    def day_window(self, day: date) -> tuple[datetime, datetime]:
        """[start, end) of ``day`` in the market's timezone."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start, end


KRX = Market(
    name="KRX",
    tz=ZoneInfo("Asia/Seoul"),
    sessions=(Session(time(9, 0), time(15, 30)),),
)

US = Market(
    name="US",
    tz=ZoneInfo("America/New_York"),
    sessions=(Session(time(9, 30), time(16, 0)),),
)

# HKEX runs a morning and an afternoon session with a lunch break.
HKEX = Market(
    name="HKEX",
    tz=ZoneInfo("Asia/Hong_Kong"),
    sessions=(
        Session(time(10, 30), time(13, 0), end_inclusive=False),
        Session(time(14, 0), time(17, 0), end_inclusive=False),
    ),
)

FX = Market(
    name="FX",
    tz=ZoneInfo("UTC"),
    sessions=(Session(time.min, time.max),),
)

EXCHANGE_MARKETS: dict[str, Market] = {
    "KRX": KRX,
    "NAS": US,
    "NYS": US,
    "AMS": US,
    "HKS": HKEX,
    "FX": FX,
}


def market_for_exchange(exchange_code: str | None) -> Market:
    """Resolve an exchange code to its market. Unknown codes default to New York."""
    if exchange_code is None:
        return US
    return EXCHANGE_MARKETS.get(exchange_code.upper(), US)


def is_open(market: Market, now: datetime | None = None) -> bool:
    """Convenience wrapper: is ``market`` open at ``now`` (default: current time)."""
    return market.is_open(now or datetime.now(SERVICE_TZ))


def service_today(now: datetime | None = None) -> date:
    """The current date in the service timezone."""
    return (now or datetime.now(SERVICE_TZ)).astimezone(SERVICE_TZ).date()
