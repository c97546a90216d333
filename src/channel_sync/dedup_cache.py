"""Push notification dedup cache backed by the ``push_records`` table."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, delete, select

from channel_sync.storage.common import chunked, to_db_datetime, unique, utc_now
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import PushRecord

LOOKUP_CHUNK_SIZE = 500
WRITE_CHUNK_SIZE = 100


class PushDedupCache:
    """Remembers which item ids were already pushed, for a bounded time.

    The push listener uses it to skip a full fetch for items it has already
    seen. Records are refreshed on every push and purged by age.
    """

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.clock = clock

    def already_pushed(self, item_ids: Sequence[str]) -> set[str]:
        ids = unique(item_ids)
        found: set[str] = set()
        if not ids:
            return found
        with self.database.session() as session:
            for part in chunked(ids, LOOKUP_CHUNK_SIZE):
                found.update(
                    session.exec(
                        select(PushRecord.item_id).where(col(PushRecord.item_id).in_(part)),
                    ).all(),
                )
        return found

    def record_push(
        self,
        item_ids: Sequence[str],
        *,
        channel_id: str | None = None,
        published_at: datetime | None = None,
    ) -> int:
        ids = unique(item_ids)
        if not ids:
            return 0
        with self.database.session() as session:
            written = record_push_rows(
                session,
                ids,
                channel_id=channel_id,
                published_at=published_at,
                now=self.clock(),
            )
            session.commit()
        return written

    def evict_older_than(self, age: timedelta) -> int:
        """Delete records whose last push is older than ``age``."""

        cutoff = to_db_datetime(self.clock() - age)
        with self.database.session() as session:
            result = session.exec(
                delete(PushRecord).where(col(PushRecord.last_push_at) < cutoff),
            )
            session.commit()
        return result.rowcount


def record_push_rows(
    session: Session,
    item_ids: Sequence[str],
    *,
    channel_id: str | None,
    published_at: datetime | None,
    now: datetime,
) -> int:
    """Upsert push records inside the caller's transaction."""

    now_db = to_db_datetime(now)
    published_db = to_db_datetime(published_at) if published_at is not None else None
    written = 0
    for part in chunked(list(item_ids), WRITE_CHUNK_SIZE):
        statement = sqlite_insert(PushRecord).values(
            [
                {
                    "item_id": item_id,
                    "channel_id": channel_id,
                    "published_at": published_db,
                    "last_push_at": now_db,
                    "created_at": now_db,
                }
                for item_id in part
            ],
        )
        statement = statement.on_conflict_do_update(
            index_elements=["item_id"],
            set_={
                "last_push_at": statement.excluded.last_push_at,
                "channel_id": func.coalesce(statement.excluded.channel_id, PushRecord.channel_id),
                "published_at": func.coalesce(
                    statement.excluded.published_at,
                    PushRecord.published_at,
                ),
            },
        )
        result = session.exec(statement)
        written += result.rowcount
    return written

