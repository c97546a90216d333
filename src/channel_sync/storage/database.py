"""Shared SQLite database handle used by every storage component."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlmodel import Session

from channel_sync.storage.alembic_runner import current_revision, upgrade_head
from channel_sync.storage.common import (
    BEGIN_MODE_OPTION,
    build_sqlite_engine,
    connect_sqlite_with_policy,
)

DEFAULT_BUSY_TIMEOUT_MS = 5_000


class Database:
    """Engine and session factory for one SQLite database file.

    ``busy_timeout_ms`` bounds how long any statement waits for a lock held
    by another worker. Exceeding it raises ``database is locked``, which the
    ingestion retry policy treats as transient contention.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        if busy_timeout_ms <= 0:
            raise ValueError("busy_timeout_ms must be > 0")
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection: sqlite3.Connection = connect_sqlite_with_policy(
            db_path=db_path,
            busy_timeout_ms=busy_timeout_ms,
        )

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def schema_revision(self) -> str | None:
        return current_revision(self.db_path)

    def session(self) -> Session:
        """Session whose transactions start with a deferred ``BEGIN``."""

        return Session(self.engine)

    @contextmanager
    def write_session(self) -> Iterator[Session]:
        """Session whose transaction takes the write lock on ``BEGIN``.

        Read-then-write sequences inside it are serialized against other
        writers, so concurrent writers cannot drop each other's updates.
        The caller commits; leaving the block without a commit rolls back.
        """

        with self.engine.connect() as connection:
            connection.execution_options(**{BEGIN_MODE_OPTION: "IMMEDIATE"})
            with Session(bind=connection) as session:
                yield session
