"""Data models for collected market data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

PRICE_QUANTUM = Decimal("0.0001")  # DECIMAL(10,4) in the daily/history tables
RATE_QUANTUM = Decimal("0.01")  # DECIMAL(5,2)


class AssetClass(str, Enum):
    """Instrument families. Each one has its own buffer and its own stores."""

    KOREAN = "korean"
    GLOBAL = "global"
    FOREX = "forex"


def to_price(value: object) -> Decimal:
    """Parse a numeric string (or number) into a fixed-precision price.

    Raises decimal.InvalidOperation for anything that is not a number.
    """
    return Decimal(str(value).strip()).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def to_rate(value: object) -> Decimal:
    """Parse a percent change into a 2-decimal rate."""
    return Decimal(str(value).strip()).quantize(RATE_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class Observation:
    """One timestamped price reading for an instrument, as produced by an ingestor."""

    instrument_code: str
    instrument_name: str
    price: Decimal
    observed_at: datetime  # tz-aware
    change_rate: Decimal | None = None
    exchange_code: str | None = None

    def to_dict(self) -> dict:
        """Serialize for JSON responses."""
        return {
            "instrument_code": self.instrument_code,
            "instrument_name": self.instrument_name,
            "price": str(self.price),
            "change_rate": None if self.change_rate is None else str(self.change_rate),
            "observed_at": self.observed_at.isoformat(),
            "exchange_code": self.exchange_code,
        }


@dataclass(frozen=True, slots=True)
class DailyRecord:
    """A persisted Observation. Rows are only ever inserted and deleted."""

    instrument_code: str
    instrument_name: str
    price: Decimal
    observed_at: datetime
    change_rate: Decimal | None = None
    exchange_code: str | None = None

    @classmethod
    def from_observation(cls, observation: Observation) -> DailyRecord:
        return cls(
            instrument_code=observation.instrument_code,
            instrument_name=observation.instrument_name,
            price=observation.price,
            observed_at=observation.observed_at,
            change_rate=observation.change_rate,
            exchange_code=observation.exchange_code,
        )


@dataclass(frozen=True, slots=True)
class HistoryRecord:
    """Closing value of one instrument on one date."""

    instrument_code: str
    instrument_name: str
    closing_price: Decimal
    date: date
    change_rate: Decimal | None = None
    exchange_code: str | None = None

    @classmethod
    def from_daily(cls, record: DailyRecord, day: date) -> HistoryRecord:
        """Build the history row for ``day`` from the last daily record of that day."""
        return cls(
            instrument_code=record.instrument_code,
            instrument_name=record.instrument_name,
            closing_price=record.price,
            date=day,
            change_rate=record.change_rate,
            exchange_code=record.exchange_code,
        )


@dataclass(frozen=True, slots=True)
class Credential:
    """An issued upstream credential. ``issued_at`` is a monotonic clock reading."""

    value: str
    issued_at: float
