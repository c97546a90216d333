"""Selection of channels whose push subscription must be renewed."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from sqlalchemy import update as sa_update
from sqlmodel import col, select

from channel_sync.config import RenewalSettings
from channel_sync.scheduling.sync import UPDATE_CHUNK_SIZE
from channel_sync.storage.common import chunked, to_db_datetime, unique, utc_now
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import Channel


class RenewalScheduler:
    """Picks channels whose push lease expires soon and tracks renewal attempts.

    A failed renewal is not fatal: once the lease lapses the channel is still
    picked up by regular sync through its staleness threshold.
    """

    def __init__(
        self,
        database: Database,
        settings: RenewalSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.settings = settings
        self.clock = clock

    def select_channels_due_for_renewal(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        now = self.clock()
        expires_before = to_db_datetime(now + timedelta(minutes=self.settings.lead_time_minutes))
        with self.database.session() as session:
            rows = session.exec(
                select(Channel.id)
                .where(
                    col(Channel.subscription_expires_at) < expires_before,
                    col(Channel.subscription_timeout_expires_at) < to_db_datetime(now),
                )
                .order_by(col(Channel.subscription_expires_at).asc(), col(Channel.id).asc())
                .limit(limit),
            ).all()
        return list(rows)

    def mark_renewal_attempted(self, channel_ids: Sequence[str]) -> int:
        """Block re-issuing a renewal while one is in flight."""

        timeout = timedelta(minutes=self.settings.attempt_cooldown_minutes)
        return self._update(
            channel_ids,
            subscription_timeout_expires_at=to_db_datetime(self.clock() + timeout),
        )

    def record_renewal_result(self, channel_ids: Sequence[str], new_expiry: datetime) -> int:
        """Store the lease expiry returned by a successful renewal."""

        return self._update(channel_ids, subscription_expires_at=to_db_datetime(new_expiry))

    def _update(self, channel_ids: Sequence[str], **values: datetime) -> int:
        ids = unique(channel_ids)
        if not ids:
            return 0
        now = to_db_datetime(self.clock())
        updated = 0
        with self.database.session() as session:
            for part in chunked(ids, UPDATE_CHUNK_SIZE):
                result = session.exec(
                    sa_update(Channel)
                    .where(col(Channel.id).in_(part))
                    .values(updated_at=now, **values),
                )
                updated += result.rowcount
            session.commit()
        return updated
