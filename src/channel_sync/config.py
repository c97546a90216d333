"""Runtime configuration for scheduling, ingestion and cleanup."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from channel_sync.models import unwrap_channel_id


@dataclass(slots=True)
class StorageSettings:
    """SQLite storage settings."""

    db_path: Path = Path(".channel_sync.db")
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class SyncSettings:
    """Channel re-check policy."""

    stale_after_hours: float = 4.0
    cooldown_minutes: float = 5.0
    batch_limit: int = 50


@dataclass(slots=True)
class RenewalSettings:
    """Push subscription renewal policy."""

    lead_time_minutes: float = 60.0
    attempt_cooldown_minutes: float = 30.0
    batch_limit: int = 50


@dataclass(slots=True)
class IngestionSettings:
    """Ingestion transaction settings."""

    chunk_size: int = 100
    max_attempts: int = 3
    retry_backoff_seconds: float = 0.25


@dataclass(slots=True)
class RetentionSettings:
    """Age-based cleanup settings."""

    item_retention_days: int = 14
    push_retention_days: int = 30


@dataclass(slots=True)
class DeliverySettings:
    """Delivery queue settings."""

    send_timeout_after_error_minutes: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    storage: StorageSettings = field(default_factory=StorageSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    renewal: RenewalSettings = field(default_factory=RenewalSettings)
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)
    retention: RetentionSettings = field(default_factory=RetentionSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    channel_deny_list: tuple[str, ...] = ()

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            storage=StorageSettings(
                db_path=db_path or Path(os.getenv("CHANNEL_SYNC_DB_PATH", ".channel_sync.db")),
                busy_timeout_ms=int(os.getenv("CHANNEL_SYNC_BUSY_TIMEOUT_MS", "5000")),
            ),
            sync=SyncSettings(
                stale_after_hours=float(os.getenv("CHANNEL_SYNC_STALE_AFTER_HOURS", "4")),
                cooldown_minutes=float(os.getenv("CHANNEL_SYNC_SYNC_COOLDOWN_MINUTES", "5")),
                batch_limit=int(os.getenv("CHANNEL_SYNC_SYNC_BATCH_LIMIT", "50")),
            ),
            renewal=RenewalSettings(
                lead_time_minutes=float(
                    os.getenv("CHANNEL_SYNC_RENEWAL_LEAD_TIME_MINUTES", "60"),
                ),
                attempt_cooldown_minutes=float(
                    os.getenv("CHANNEL_SYNC_RENEWAL_ATTEMPT_COOLDOWN_MINUTES", "30"),
                ),
                batch_limit=int(os.getenv("CHANNEL_SYNC_RENEWAL_BATCH_LIMIT", "50")),
            ),
            ingestion=IngestionSettings(
                chunk_size=int(os.getenv("CHANNEL_SYNC_INGEST_CHUNK_SIZE", "100")),
                max_attempts=int(os.getenv("CHANNEL_SYNC_INGEST_MAX_ATTEMPTS", "3")),
                retry_backoff_seconds=float(
                    os.getenv("CHANNEL_SYNC_INGEST_RETRY_BACKOFF_SECONDS", "0.25"),
                ),
            ),
            retention=RetentionSettings(
                item_retention_days=int(os.getenv("CHANNEL_SYNC_ITEM_RETENTION_DAYS", "14")),
                push_retention_days=int(os.getenv("CHANNEL_SYNC_PUSH_RETENTION_DAYS", "30")),
            ),
            delivery=DeliverySettings(
                send_timeout_after_error_minutes=float(
                    os.getenv("CHANNEL_SYNC_SEND_TIMEOUT_AFTER_ERROR_MINUTES", "5"),
                ),
            ),
            channel_deny_list=_collect_deny_list(),
        )

    def validate(self) -> None:
        """Raise configuration error if any value is out of range."""

        if self.storage.busy_timeout_ms <= 0:
            raise ValueError("CHANNEL_SYNC_BUSY_TIMEOUT_MS must be > 0.")
        if self.sync.stale_after_hours <= 0:
            raise ValueError("CHANNEL_SYNC_STALE_AFTER_HOURS must be > 0.")
        if self.sync.cooldown_minutes < 0:
            raise ValueError("CHANNEL_SYNC_SYNC_COOLDOWN_MINUTES must be >= 0.")
        if self.renewal.lead_time_minutes < 0:
            raise ValueError("CHANNEL_SYNC_RENEWAL_LEAD_TIME_MINUTES must be >= 0.")
        if self.renewal.attempt_cooldown_minutes < 0:
            raise ValueError("CHANNEL_SYNC_RENEWAL_ATTEMPT_COOLDOWN_MINUTES must be >= 0.")
        for name, value in (
            ("CHANNEL_SYNC_SYNC_BATCH_LIMIT", self.sync.batch_limit),
            ("CHANNEL_SYNC_RENEWAL_BATCH_LIMIT", self.renewal.batch_limit),
            ("CHANNEL_SYNC_INGEST_CHUNK_SIZE", self.ingestion.chunk_size),
            ("CHANNEL_SYNC_INGEST_MAX_ATTEMPTS", self.ingestion.max_attempts),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be a positive integer.")
        if self.ingestion.retry_backoff_seconds < 0:
            raise ValueError("CHANNEL_SYNC_INGEST_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.retention.item_retention_days < 0:
            raise ValueError("CHANNEL_SYNC_ITEM_RETENTION_DAYS must be >= 0.")
        if self.retention.push_retention_days < 0:
            raise ValueError("CHANNEL_SYNC_PUSH_RETENTION_DAYS must be >= 0.")
        if self.delivery.send_timeout_after_error_minutes < 0:
            raise ValueError("CHANNEL_SYNC_SEND_TIMEOUT_AFTER_ERROR_MINUTES must be >= 0.")
        for channel_id in self.channel_deny_list:
            _validate_channel_id(channel_id)


def _collect_deny_list() -> tuple[str, ...]:
    raw = os.getenv("CHANNEL_SYNC_CHANNEL_DENY_LIST", "").strip()
    if not raw:
        return ()
    return _normalize_channel_ids(raw.split(","))


def _normalize_channel_ids(values: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized:
            continue
        if normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)


def _validate_channel_id(value: str) -> None:
    try:
        unwrap_channel_id(value)
    except ValueError as error:
        raise ValueError(
            "Invalid deny-listed channel id: "
            f"{value!r}. Expected '<service>:<channel id>'.",
        ) from error
