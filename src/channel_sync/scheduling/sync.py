"""Selection of channels due for a content re-check."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy import update as sa_update
from sqlmodel import col, select

from channel_sync.config import SyncSettings
from channel_sync.errors import NotFoundError
from channel_sync.models import SyncClaimed, SyncClaimState, SyncIdle
from channel_sync.storage.common import (
    chunked,
    to_db_datetime,
    to_utc_aware_datetime,
    unique,
    utc_now,
)
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import Channel

logger = logging.getLogger(__name__)
UPDATE_CHUNK_SIZE = 500


class SyncScheduler:
    """Picks channels to re-check and claims them with a cooldown.

    A claim is optimistic: it only pushes ``sync_timeout_expires_at`` into the
    future. A worker that crashes after claiming leaves nothing behind, the
    channel simply becomes eligible again once the cooldown passes.
    Two workers may claim overlapping batches between select and claim; the
    unique delivery key makes the resulting double ingestion harmless.
    """

    def __init__(
        self,
        database: Database,
        settings: SyncSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.settings = settings
        self.clock = clock

    @property
    def stale_after(self) -> timedelta:
        return timedelta(hours=self.settings.stale_after_hours)

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.settings.cooldown_minutes)

    def select_channels_due_for_sync(self, limit: int) -> list[str]:
        """Return ids of due channels, never-synced first, then most stale first."""

        if limit <= 0:
            return []
        now = self.clock()
        stale_before = to_db_datetime(now - self.stale_after)
        with self.database.session() as session:
            rows = session.exec(
                select(Channel.id)
                .where(
                    col(Channel.sync_timeout_expires_at) < to_db_datetime(now),
                    or_(
                        col(Channel.has_pending_changes).is_(True),
                        col(Channel.last_sync_at) < stale_before,
                    ),
                )
                .order_by(
                    col(Channel.last_item_published_at).is_not(None),
                    col(Channel.last_sync_at).asc(),
                    col(Channel.id).asc(),
                )
                .limit(limit),
            ).all()
        return list(rows)

    def mark_sync_claimed(self, channel_ids: Sequence[str]) -> int:
        """Start the cooldown for claimed channels and clear their pending flag."""

        ids = unique(channel_ids)
        if not ids:
            return 0
        now = self.clock()
        expires_at = to_db_datetime(now + self.cooldown)
        updated = 0
        with self.database.session() as session:
            for part in chunked(ids, UPDATE_CHUNK_SIZE):
                result = session.exec(
                    sa_update(Channel)
                    .where(col(Channel.id).in_(part))
                    .values(
                        sync_timeout_expires_at=expires_at,
                        has_pending_changes=False,
                        updated_at=to_db_datetime(now),
                    ),
                )
                updated += result.rowcount
            session.commit()
        if updated != len(ids):
            logger.debug(
                "Sync claim touched fewer channels than requested (requested=%s updated=%s).",
                len(ids),
                updated,
            )
        return updated

    def claim_state(self, channel_id: str) -> SyncClaimState:
        """Derive the claim state of one channel from its cooldown timestamp."""

        with self.database.session() as session:
            expires_at = session.exec(
                select(Channel.sync_timeout_expires_at).where(Channel.id == channel_id),
            ).one_or_none()
        if expires_at is None:
            raise NotFoundError(message=f"Channel is not found: {channel_id}")
        expires_at = to_utc_aware_datetime(expires_at)
        if expires_at > self.clock():
            return SyncClaimed(expires_at=expires_at)
        return SyncIdle()

    def select_channel_ids_by_service(self, service: str, *, offset: int, limit: int) -> list[str]:
        """Page through every channel of one service, for full re-sync passes."""

        if limit <= 0:
            return []
        with self.database.session() as session:
            rows = session.exec(
                select(Channel.id)
                .where(Channel.service == service)
                .order_by(col(Channel.id))
                .offset(max(0, offset))
                .limit(limit),
            ).all()
        return list(rows)
