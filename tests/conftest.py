"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from channel_sync.config import Settings, StorageSettings
from channel_sync.core import ChannelSyncCore
from channel_sync.storage.database import Database


class FakeClock:
    """Deterministic UTC clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "channel-sync.db"


@pytest.fixture()
def settings(db_path: Path) -> Settings:
    return Settings(storage=StorageSettings(db_path=db_path, busy_timeout_ms=2_000))


@pytest.fixture()
def database(settings: Settings):
    database = Database(
        settings.storage.db_path,
        busy_timeout_ms=settings.storage.busy_timeout_ms,
    )
    database.init_schema()
    yield database
    database.close()


@pytest.fixture()
def core(settings: Settings, database: Database, clock: FakeClock, sleeps: list[float]):
    return ChannelSyncCore(settings, database, clock=clock, sleep=sleeps.append)
