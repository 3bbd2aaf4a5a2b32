"""DuckDB-backed Daily/History stores."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from threading import Lock

import duckdb

from .models import AssetClass, DailyRecord, HistoryRecord
from .stores import DailyStore, HistoryStore

logger = logging.getLogger(__name__)

DAILY_TABLES: dict[AssetClass, str] = {
    AssetClass.KOREAN: "korean_daily_stock",
    AssetClass.GLOBAL: "global_daily_stock",
    AssetClass.FOREX: "daily_forex",
}

HISTORY_TABLES: dict[AssetClass, str] = {
    AssetClass.KOREAN: "korean_history_stock",
    AssetClass.GLOBAL: "global_history_stock",
    AssetClass.FOREX: "history_forex",
}

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

_DAILY_COLUMNS = "instrument_code, instrument_name, price, change_rate, observed_at, exchange_code"
_HISTORY_COLUMNS = "instrument_code, instrument_name, closing_price, change_rate, trade_date, exchange_code"


def _to_utc(instant: datetime) -> datetime:
    """Aware datetime -> naive UTC, the form stored in TIMESTAMP columns."""
    return instant.astimezone(timezone.utc).replace(tzinfo=None)


def _from_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _checked(table: str) -> str:
    if not _IDENTIFIER.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


class DuckDBDatabase:
    """One DuckDB connection shared by every store, serialized with a lock.

    Store calls run in worker threads (asyncio.to_thread), and a DuckDB
    connection must not be used from two threads at once.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        self._conn = duckdb.connect(database=self._path)
        self._lock = Lock()
        logger.info("DuckDB store opened: %s", self._path)

    @contextmanager
    def connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        with self._lock:
            yield self._conn

    def daily_store(self, asset_class: AssetClass) -> DuckDBDailyStore:
        return DuckDBDailyStore(self, DAILY_TABLES[asset_class])

    def history_store(self, asset_class: AssetClass) -> DuckDBHistoryStore:
        return DuckDBHistoryStore(self, HISTORY_TABLES[asset_class])

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("DuckDB store closed: %s", self._path)


class DuckDBDailyStore(DailyStore):
    def __init__(self, db: DuckDBDatabase, table: str) -> None:
        self._db = db
        self._table = _checked(table)
        with self._db.connection() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    instrument_code VARCHAR NOT NULL,
                    instrument_name VARCHAR NOT NULL,
                    price DECIMAL(18, 4) NOT NULL,
                    change_rate DECIMAL(9, 2),
                    observed_at TIMESTAMP NOT NULL,
                    exchange_code VARCHAR
                )
                """
            )

    def latest(self, code: str) -> DailyRecord | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {_DAILY_COLUMNS} FROM {self._table} "
                "WHERE instrument_code = ? ORDER BY observed_at DESC LIMIT 1",
                [code],
            ).fetchone()
        return _daily_from_row(row) if row else None

    def find_range(self, code: str, start: datetime, end: datetime) -> list[DailyRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_DAILY_COLUMNS} FROM {self._table} "
                "WHERE instrument_code = ? AND observed_at >= ? AND observed_at < ? "
                "ORDER BY observed_at",
                [code, _to_utc(start), _to_utc(end)],
            ).fetchall()
        return [_daily_from_row(row) for row in rows]

    def distinct_codes(self, start: datetime, end: datetime) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT instrument_code FROM {self._table} "
                "WHERE observed_at >= ? AND observed_at < ? ORDER BY instrument_code",
                [_to_utc(start), _to_utc(end)],
            ).fetchall()
        return [row[0] for row in rows]

    def save(self, record: DailyRecord) -> None:
        with self._db.connection() as conn:
            conn.execute(
                f"INSERT INTO {self._table} ({_DAILY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    record.instrument_code,
                    record.instrument_name,
                    record.price,
                    record.change_rate,
                    _to_utc(record.observed_at),
                    record.exchange_code,
                ],
            )

    def delete_range(self, code: str, start: datetime, end: datetime) -> int:
        params = [code, _to_utc(start), _to_utc(end)]
        where = "WHERE instrument_code = ? AND observed_at >= ? AND observed_at < ?"
        with self._db.connection() as conn:
            (count,) = conn.execute(
                f"SELECT count(*) FROM {self._table} {where}", params
            ).fetchone()
            conn.execute(f"DELETE FROM {self._table} {where}", params)
        return int(count)


class DuckDBHistoryStore(HistoryStore):
    def __init__(self, db: DuckDBDatabase, table: str) -> None:
        self._db = db
        self._table = _checked(table)
        with self._db.connection() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    instrument_code VARCHAR NOT NULL,
                    instrument_name VARCHAR NOT NULL,
                    closing_price DECIMAL(18, 4) NOT NULL,
                    change_rate DECIMAL(9, 2),
                    trade_date DATE NOT NULL,
                    exchange_code VARCHAR
                )
                """
            )

    def exists(self, code: str, day: date) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT 1 FROM {self._table} WHERE instrument_code = ? AND trade_date = ? LIMIT 1",
                [code, day],
            ).fetchone()
        return row is not None

    def save(self, record: HistoryRecord) -> None:
        with self._db.connection() as conn:
            conn.execute(
                f"INSERT INTO {self._table} ({_HISTORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    record.instrument_code,
                    record.instrument_name,
                    record.closing_price,
                    record.change_rate,
                    record.date,
                    record.exchange_code,
                ],
            )

    def delete_before(self, day: date) -> int:
        with self._db.connection() as conn:
            (count,) = conn.execute(
                f"SELECT count(*) FROM {self._table} WHERE trade_date < ?", [day]
            ).fetchone()
            conn.execute(f"DELETE FROM {self._table} WHERE trade_date < ?", [day])
        return int(count)

    def find(
        self, code: str, start: date | None = None, end: date | None = None
    ) -> list[HistoryRecord]:
        conditions = ["instrument_code = ?"]
        params: list[object] = [code]
        if start is not None:
            conditions.append("trade_date >= ?")
            params.append(start)
        if end is not None:
            conditions.append("trade_date <= ?")
            params.append(end)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {_HISTORY_COLUMNS} FROM {self._table} "
                f"WHERE {' AND '.join(conditions)} ORDER BY trade_date",
                params,
            ).fetchall()
        return [_history_from_row(row) for row in rows]


def _daily_from_row(row: tuple) -> DailyRecord:
    code, name, price, change_rate, observed_at, exchange_code = row
    return DailyRecord(
        instrument_code=code,
        instrument_name=name,
        price=price,
        observed_at=_from_utc(observed_at),
        change_rate=change_rate,
        exchange_code=exchange_code,
    )


def _history_from_row(row: tuple) -> HistoryRecord:
    code, name, closing_price, change_rate, trade_date, exchange_code = row
    return HistoryRecord(
        instrument_code=code,
        instrument_name=name,
        closing_price=closing_price,
        date=trade_date,
        change_rate=change_rate,
        exchange_code=exchange_code,
    )
