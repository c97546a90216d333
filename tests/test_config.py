from __future__ import annotations

from pathlib import Path

import allure
import pytest

from channel_sync.config import IngestionSettings, Settings, SyncSettings

pytestmark = [
    allure.epic("Channel Sync"),
    allure.feature("Configuration"),
]


def test_from_env_uses_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CHANNEL_SYNC_DB_PATH",
        "CHANNEL_SYNC_STALE_AFTER_HOURS",
        "CHANNEL_SYNC_INGEST_MAX_ATTEMPTS",
        "CHANNEL_SYNC_CHANNEL_DENY_LIST",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.storage.db_path == Path(".channel_sync.db")
    assert settings.sync.stale_after_hours == 4.0
    assert settings.ingestion.chunk_size == 100
    assert settings.ingestion.max_attempts == 3
    assert settings.ingestion.retry_backoff_seconds == 0.25
    assert settings.channel_deny_list == ()
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHANNEL_SYNC_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("CHANNEL_SYNC_STALE_AFTER_HOURS", "2.5")
    monkeypatch.setenv("CHANNEL_SYNC_SYNC_COOLDOWN_MINUTES", "10")
    monkeypatch.setenv("CHANNEL_SYNC_INGEST_CHUNK_SIZE", "7")
    monkeypatch.setenv("CHANNEL_SYNC_CHANNEL_DENY_LIST", " yt:bad , yt:bad,rss:spam ,")

    settings = Settings.from_env()

    assert settings.storage.db_path == tmp_path / "env.db"
    assert settings.sync.stale_after_hours == 2.5
    assert settings.sync.cooldown_minutes == 10.0
    assert settings.ingestion.chunk_size == 7
    assert settings.channel_deny_list == ("yt:bad", "rss:spam")


def test_from_env_explicit_db_path_wins(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHANNEL_SYNC_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.storage.db_path == tmp_path / "cli.db"


def test_validate_rejects_non_positive_batch_limit() -> None:
    settings = Settings(sync=SyncSettings(batch_limit=0))

    with pytest.raises(ValueError, match="CHANNEL_SYNC_SYNC_BATCH_LIMIT must be a positive integer"):
        settings.validate()


def test_validate_rejects_zero_attempts() -> None:
    settings = Settings(ingestion=IngestionSettings(max_attempts=0))

    with pytest.raises(ValueError, match="CHANNEL_SYNC_INGEST_MAX_ATTEMPTS"):
        settings.validate()


def test_validate_rejects_malformed_deny_list_entry() -> None:
    settings = Settings(channel_deny_list=("no-service-prefix",))

    with pytest.raises(ValueError, match="Invalid deny-listed channel id"):
        settings.validate()
