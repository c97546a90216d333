"""Controllers for operator CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from channel_sync.config import Settings
from channel_sync.core import ChannelSyncCore
from channel_sync.storage.common import utc_now
from channel_sync.storage.database import Database


@dataclass(slots=True)
class DbUpgradeCommand:
    """CLI inputs for schema upgrade command."""

    db_path: Path | None


@dataclass(slots=True)
class DueChannelsCommand:
    """CLI inputs for due sync/renewal listing commands."""

    db_path: Path | None
    limit: int | None
    claim: bool


@dataclass(slots=True)
class MaintenanceCommand:
    """CLI inputs for maintenance commands."""

    db_path: Path | None


@dataclass(slots=True)
class StatsCommand:
    """CLI inputs for stats command."""

    db_path: Path | None
    service: str | None
    hours: int
    limit: int


class ChannelSyncCliController:
    """Coordinates operator command execution."""

    def db_upgrade(self, command: DbUpgradeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        database = Database(
            settings.storage.db_path,
            busy_timeout_ms=settings.storage.busy_timeout_ms,
        )
        try:
            database.init_schema()
            revision = database.schema_revision()
        finally:
            database.close()
        return [
            f"Database schema is up to date: {settings.storage.db_path}",
            f"Revision: {revision}",
        ]

    def due_sync(self, command: DueChannelsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _core(settings) as core:
            limit = command.limit or settings.sync.batch_limit
            channel_ids = core.sync.select_channels_due_for_sync(limit)
            claimed = core.sync.mark_sync_claimed(channel_ids) if command.claim else 0

        lines = [f"Channels due for sync: {len(channel_ids)}"]
        lines.extend(f"  {channel_id}" for channel_id in channel_ids)
        if command.claim:
            lines.append(f"Claimed: {claimed}")
        return lines

    def due_renewal(self, command: DueChannelsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _core(settings) as core:
            limit = command.limit or settings.renewal.batch_limit
            channel_ids = core.renewal.select_channels_due_for_renewal(limit)
            claimed = core.renewal.mark_renewal_attempted(channel_ids) if command.claim else 0

        lines = [f"Channels due for renewal: {len(channel_ids)}"]
        lines.extend(f"  {channel_id}" for channel_id in channel_ids)
        if command.claim:
            lines.append(f"Marked as attempted: {claimed}")
        return lines

    def sweep(self, command: MaintenanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _core(settings) as core:
            report = core.maintenance.run_sweeps()

        lines = []
        for step in report.steps:
            if step.ok:
                lines.append(f"{step.name}: deleted={step.deleted}")
            else:
                lines.append(f"{step.name}: failed ({step.error})")
        if report.failed_steps:
            lines.append(f"Failed steps: {len(report.failed_steps)}")
        return lines

    def purge_denied(self, command: MaintenanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _core(settings) as core:
            deleted = core.maintenance.on_startup()
        return [
            f"Deny list size: {len(settings.channel_deny_list)}",
            f"Channels purged: {deleted}",
        ]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _core(settings) as core:
            groups = core.subscriptions.count_subscribed_groups()
            channels = core.subscriptions.count_subscribed_channels()
            pending_groups = core.delivery.list_groups_with_pending()
            top = []
            if command.service:
                top = core.subscriptions.top_channels_by_service(
                    command.service,
                    since=utc_now() - timedelta(hours=command.hours),
                    limit=command.limit,
                )

        lines = [
            f"Subscribed groups: {groups}",
            f"Subscribed channels: {channels}",
            f"Groups with pending deliveries: {len(pending_groups)}",
        ]
        if not command.service:
            return lines

        lines.append(f"Top {command.service} channels (last {command.hours}h):")
        if not top:
            lines.append("  -")
        for entry in top:
            title = entry.title or "-"
            lines.append(f"  {entry.channel_id} chats={entry.chat_count} title={title}")
        return lines


@contextmanager
def _core(settings: Settings) -> Iterator[ChannelSyncCore]:
    core = ChannelSyncCore.open(settings)
    try:
        yield core
    finally:
        core.close()
