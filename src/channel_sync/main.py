"""CLI entrypoint for channel-sync."""

from pathlib import Path

import rich_click as click

from channel_sync import __version__
from channel_sync.controllers import (
    ChannelSyncCliController,
    DbUpgradeCommand,
    DueChannelsCommand,
    MaintenanceCommand,
    StatsCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ChannelSyncCliController()


@click.group()
@click.version_option(version=__version__, prog_name="channel-sync")
def channel_sync() -> None:
    """Channel sync operator CLI."""


@channel_sync.group()
def db() -> None:
    """Database commands."""


@db.command("upgrade")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def db_upgrade(db_path: Path | None) -> None:
    """Apply schema migrations up to head."""

    _emit_lines(CONTROLLER.db_upgrade(DbUpgradeCommand(db_path=db_path)))


@channel_sync.group()
def due() -> None:
    """Inspect channels due for scheduled work."""


@due.command("sync")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Batch size. Defaults to CHANNEL_SYNC_SYNC_BATCH_LIMIT.",
)
@click.option(
    "--claim/--no-claim",
    default=False,
    show_default=True,
    help="Start the sync cooldown for the listed channels.",
)
def due_sync(db_path: Path | None, limit: int | None, claim: bool) -> None:
    """List channels due for a content re-check."""

    _emit_lines(CONTROLLER.due_sync(DueChannelsCommand(db_path=db_path, limit=limit, claim=claim)))


@due.command("renewal")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Batch size. Defaults to CHANNEL_SYNC_RENEWAL_BATCH_LIMIT.",
)
@click.option(
    "--claim/--no-claim",
    default=False,
    show_default=True,
    help="Mark renewal as attempted for the listed channels.",
)
def due_renewal(db_path: Path | None, limit: int | None, claim: bool) -> None:
    """List channels whose push subscription must be renewed."""

    _emit_lines(
        CONTROLLER.due_renewal(DueChannelsCommand(db_path=db_path, limit=limit, claim=claim)),
    )


@channel_sync.group()
def maintenance() -> None:
    """Cleanup commands."""


@maintenance.command("sweep")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def maintenance_sweep(db_path: Path | None) -> None:
    """Run orphan cleanup, item retention and push record eviction."""

    _emit_lines(CONTROLLER.sweep(MaintenanceCommand(db_path=db_path)))


@maintenance.command("purge-denied")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def maintenance_purge_denied(db_path: Path | None) -> None:
    """Delete every channel listed in CHANNEL_SYNC_CHANNEL_DENY_LIST."""

    _emit_lines(CONTROLLER.purge_denied(MaintenanceCommand(db_path=db_path)))


@channel_sync.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--service", default=None, help="Show most subscribed channels of this service.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=24 * 7,
    show_default=True,
    help="Only count channels that published within this window.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=10,
    show_default=True,
    help="How many top channels to display.",
)
def stats(db_path: Path | None, service: str | None, hours: int, limit: int) -> None:
    """Show subscription and delivery statistics."""

    _emit_lines(
        CONTROLLER.stats(
            StatsCommand(db_path=db_path, service=service, hours=hours, limit=limit),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    channel_sync()
