"""Daily/History store contracts and their in-memory implementations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from threading import Lock

from .models import DailyRecord, HistoryRecord


class DailyStore(ABC):
    """Short-retention store of accepted observations, keyed by (code, observed_at)."""

    @abstractmethod
    def latest(self, code: str) -> DailyRecord | None:
        """Most recent record for ``code`` by observation time, or None."""

    @abstractmethod
    def find_range(self, code: str, start: datetime, end: datetime) -> list[DailyRecord]:
        """Records for ``code`` with start <= observed_at < end, oldest first."""

    @abstractmethod
    def distinct_codes(self, start: datetime, end: datetime) -> list[str]:
        """Instrument codes with at least one record in [start, end)."""

    @abstractmethod
    def save(self, record: DailyRecord) -> None:
        """Insert one record."""

    @abstractmethod
    def delete_range(self, code: str, start: datetime, end: datetime) -> int:
        """Delete ``code``'s records in [start, end). Returns the number deleted."""


class HistoryStore(ABC):
    """Long-retention store of one closing value per (code, date)."""

    @abstractmethod
    def exists(self, code: str, day: date) -> bool:
        """True if a record for (code, day) exists."""

    @abstractmethod
    def save(self, record: HistoryRecord) -> None:
        """Insert one record."""

    @abstractmethod
    def delete_before(self, day: date) -> int:
        """Delete every record dated strictly before ``day``. Returns the number deleted."""

    @abstractmethod
    def find(
        self, code: str, start: date | None = None, end: date | None = None
    ) -> list[HistoryRecord]:
        """Records for ``code`` with start <= date <= end, oldest first."""


class InMemoryDailyStore(DailyStore):
    """Lock-guarded list. Used by tests and when no database is configured."""

    def __init__(self) -> None:
        self._records: list[DailyRecord] = []
        self._lock = Lock()

    def latest(self, code: str) -> DailyRecord | None:
        with self._lock:
            matches = [r for r in self._records if r.instrument_code == code]
        if not matches:
            return None
        return max(matches, key=lambda r: r.observed_at)

    def find_range(self, code: str, start: datetime, end: datetime) -> list[DailyRecord]:
        with self._lock:
            matches = [
                r
                for r in self._records
                if r.instrument_code == code and start <= r.observed_at < end
            ]
        return sorted(matches, key=lambda r: r.observed_at)

    def distinct_codes(self, start: datetime, end: datetime) -> list[str]:
        with self._lock:
            codes = {r.instrument_code for r in self._records if start <= r.observed_at < end}
        return sorted(codes)

    def save(self, record: DailyRecord) -> None:
        with self._lock:
            self._records.append(record)

    def delete_range(self, code: str, start: datetime, end: datetime) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [
                r
                for r in self._records
                if not (r.instrument_code == code and start <= r.observed_at < end)
            ]
            return before - len(self._records)

    def all(self) -> list[DailyRecord]:
        """Every record, oldest first."""
        with self._lock:
            return sorted(self._records, key=lambda r: r.observed_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class InMemoryHistoryStore(HistoryStore):
    def __init__(self) -> None:
        self._records: list[HistoryRecord] = []
        self._lock = Lock()

    def exists(self, code: str, day: date) -> bool:
        with self._lock:
            return any(r.instrument_code == code and r.date == day for r in self._records)

    def save(self, record: HistoryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def delete_before(self, day: date) -> int:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.date >= day]
            return before - len(self._records)

    def find(
        self, code: str, start: date | None = None, end: date | None = None
    ) -> list[HistoryRecord]:
        with self._lock:
            matches = [
                r
                for r in self._records
                if r.instrument_code == code
                and (start is None or r.date >= start)
                and (end is None or r.date <= end)
            ]
        return sorted(matches, key=lambda r: r.date)

    def all(self) -> list[HistoryRecord]:
        with self._lock:
            return sorted(self._records, key=lambda r: (r.date, r.instrument_code))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
