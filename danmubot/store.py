"""SQLite tables for sign-ins, daily message counts and blind-box results."""

from __future__ import annotations

import datetime
import logging
import os
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    """No row matched the query."""


def open_database(path: str | os.PathLike) -> sqlite3.Connection:
    """Open (creating if needed) the SQLite database file."""
    location = str(path)
    if location != ":memory:":
        Path(location).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(location, timeout=5.0, check_same_thread=False)
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def _save(conn: sqlite3.Connection, table: str, values: dict[str, Any], row_id: int | None) -> int:
    columns = list(values)
    if row_id:
        names = ", ".join(["id", *columns])
        marks = ", ".join("?" * (len(columns) + 1))
        with conn:
            conn.execute(
                f'INSERT OR REPLACE INTO "{table}" ({names}) VALUES ({marks})',
                (row_id, *values.values()),
            )
        return row_id
    names = ", ".join(columns)
    marks = ", ".join("?" * len(columns))
    with conn:
        cursor = conn.execute(f'INSERT INTO "{table}" ({names}) VALUES ({marks})', tuple(values.values()))
    return cursor.lastrowid


@dataclass
class SignInRecord:
    uid: int
    last_day: int
    count: int
    id: int | None = None


class SignInModel:
    """Per-room sign-in counters."""

    def __init__(self, conn: sqlite3.Connection, room_id: int, *, clock: Callable[[], float] = time.time):
        self._conn = conn
        self._clock = clock
        self.table = f"room_{int(room_id)}"
        with conn:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" '
                "(id INTEGER PRIMARY KEY AUTOINCREMENT, uid INTEGER, last_day INTEGER, count INTEGER)"
            )

    def insert(self, record: SignInRecord) -> None:
        """Insert the record, or replace it when it already has an id."""
        record.id = _save(
            self._conn,
            self.table,
            {"uid": record.uid, "last_day": record.last_day, "count": record.count},
            record.id,
        )

    def find_one(self, uid: int) -> SignInRecord:
        row = self._conn.execute(
            f'SELECT id, uid, last_day, count FROM "{self.table}" WHERE uid = ? LIMIT 1', (uid,)
        ).fetchone()
        if row is None:
            raise RecordNotFound(f"no sign-in record for {uid}")
        return SignInRecord(uid=row[1], last_day=row[2], count=row[3], id=row[0])

    def update_count(self, uid: int) -> None:
        """Add one sign-in and stamp the current time."""
        with self._conn:
            self._conn.execute(
                f'UPDATE "{self.table}" SET count = count + 1, last_day = ? WHERE uid = ?',
                (int(self._clock()), uid),
            )


@dataclass
class DanmuCountRecord:
    uid: int
    date: str
    count: int
    id: int | None = None


class DanmuCountModel:
    """Per-room daily message counts."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        room_id: int,
        *,
        today: Callable[[], datetime.date] = datetime.date.today,
    ):
        self._conn = conn
        self._today = today
        self.table = f"danmu_{int(room_id)}"
        with conn:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" '
                "(id INTEGER PRIMARY KEY AUTOINCREMENT, uid INTEGER, date TEXT, count INTEGER)"
            )

    def date_str(self, days_ago: int) -> str:
        """The date `days_ago` days before today as YYYY-MM-DD."""
        text = (self._today() - datetime.timedelta(days=days_ago)).strftime("%Y-%m-%d")
        log.info(text)
        return text

    def insert(self, record: DanmuCountRecord) -> None:
        record.id = _save(
            self._conn,
            self.table,
            {"uid": record.uid, "date": record.date, "count": record.count},
            record.id,
        )

    def find_one(self, uid: int, date: str) -> DanmuCountRecord:
        row = self._conn.execute(
            f'SELECT id, uid, date, count FROM "{self.table}" WHERE uid = ? AND date = ? LIMIT 1',
            (uid, date),
        ).fetchone()
        if row is None:
            raise RecordNotFound(f"no message count for {uid} on {date}")
        return DanmuCountRecord(uid=row[1], date=row[2], count=row[3], id=row[0])

    def recent_three_days(self, uid: int) -> list[DanmuCountRecord]:
        """Records of today and the two days before, oldest first."""
        rows = self._conn.execute(
            f'SELECT id, uid, date, count FROM "{self.table}" '
            "WHERE uid = ? AND date BETWEEN ? AND ? ORDER BY date ASC",
            (uid, self.date_str(2), self.date_str(0)),
        ).fetchall()
        if not rows:
            raise RecordNotFound(f"no recent message counts for {uid}")
        return [DanmuCountRecord(uid=r[1], date=r[2], count=r[3], id=r[0]) for r in rows]

    def update_count(self, uid: int) -> None:
        """Add one message to today's count."""
        with self._conn:
            self._conn.execute(
                f'UPDATE "{self.table}" SET count = count + 1 WHERE uid = ? AND date = ?',
                (uid, self.date_str(0)),
            )


@dataclass
class BlindBoxRecord:
    uid: int
    blind_box_name: str
    price: int
    original_gift_price: int
    cnt: int
    year: int
    month: int
    day: int
    id: int | None = None


@dataclass(frozen=True)
class BlindBoxTotal:
    """Number of boxes opened and the net gain in the smallest currency unit."""

    count: int
    profit: int


class BlindBoxStatModel:
    """Per-room blind-box opening log."""

    def __init__(self, conn: sqlite3.Connection, room_id: int):
        self._conn = conn
        self.table = f"blind_{int(room_id)}"
        with conn:
            conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{self.table}" '
                "(id INTEGER PRIMARY KEY AUTOINCREMENT, uid INTEGER, blind_box_name TEXT, "
                "price INTEGER, original_gift_price INTEGER, cnt INTEGER, "
                "year INTEGER, month INTEGER, day INTEGER)"
            )

    def insert(self, record: BlindBoxRecord) -> None:
        record.id = _save(
            self._conn,
            self.table,
            {
                "uid": record.uid,
                "blind_box_name": record.blind_box_name,
                "price": record.price,
                "original_gift_price": record.original_gift_price,
                "cnt": record.cnt,
                "year": record.year,
                "month": record.month,
                "day": record.day,
            },
            record.id,
        )

    def _sum(self, clauses: list[str], params: list[Any], year: int, month: int, day: int) -> BlindBoxTotal:
        for name, value in (("year", year), ("month", month), ("day", day)):
            if value > 0:
                clauses.append(f"{name} = ?")
                params.append(value)
        sql = (
            "SELECT COALESCE(SUM(cnt), 0), "
            "COALESCE(SUM(cnt * price) - SUM(cnt * original_gift_price), 0) "
            f'FROM "{self.table}"'
        )
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        count, profit = self._conn.execute(sql, params).fetchone()
        return BlindBoxTotal(count=count, profit=profit)

    def total_for_user(self, uid: int, year: int, month: int, day: int) -> BlindBoxTotal:
        """Totals of one user; a zero year, month or day is not filtered on."""
        return self._sum(["uid = ?"], [uid], year, month, day)

    def total(self, year: int, month: int, day: int) -> BlindBoxTotal:
        """Totals of everyone; a zero year, month or day is not filtered on."""
        return self._sum([], [], year, month, day)