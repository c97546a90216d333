"""Common helpers for storage components."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

T = TypeVar("T")

EPOCH = datetime(1970, 1, 1)
BEGIN_MODE_OPTION = "sqlite_begin_mode"
_BEGIN_MODES = frozenset({"DEFERRED", "IMMEDIATE", "EXCLUSIVE"})


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    """Convert to the naive UTC representation stored in SQLite."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    """Convert a stored timestamp back to an aware UTC datetime."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def optional_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return to_utc_aware_datetime(value)


def chunked(values: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split values into consecutive lists of at most ``size`` elements."""

    if size <= 0:
        raise ValueError("chunk size must be > 0")
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


def unique(values: Sequence[str]) -> list[str]:
    """Drop duplicates and keep first-seen order."""

    return list(dict.fromkeys(values))


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Build SQLAlchemy engine with consistent SQLite policy.

    pysqlite's implicit transaction handling is disabled and every
    transaction is opened with an explicit ``BEGIN``. The begin mode
    defaults to ``DEFERRED`` and can be raised per connection with the
    ``sqlite_begin_mode`` execution option, so writers that must not lose
    updates take the database write lock up front with ``BEGIN IMMEDIATE``.
    """

    db_url = f"sqlite:///{db_path}"
    engine = create_engine(
        db_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(0.001, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    event.listen(engine, "begin", _emit_begin)
    return engine


def connect_sqlite_with_policy(*, db_path: Path, busy_timeout_ms: int) -> sqlite3.Connection:
    """Create sqlite3 connection with the same policy as SQLAlchemy engine."""

    connection = sqlite3.connect(db_path, timeout=max(0.001, busy_timeout_ms / 1000.0))
    _apply_sqlite_pragmas(connection, busy_timeout_ms=busy_timeout_ms)
    connection.row_factory = sqlite3.Row
    return connection


def _emit_begin(connection: Connection) -> None:
    mode = str(connection.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")).upper()
    if mode not in _BEGIN_MODES:
        raise ValueError(f"Unsupported SQLite begin mode: {mode!r}")
    connection.exec_driver_sql(f"BEGIN {mode}")


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
