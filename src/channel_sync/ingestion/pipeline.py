"""Atomic ingestion of fetched channel deltas, new items and fan-out rows."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import ColumnElement, case, func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, col, delete, select

from channel_sync.config import IngestionSettings
from channel_sync.dedup_cache import record_push_rows
from channel_sync.errors import NotFoundError
from channel_sync.ingestion.retry import RetryPolicy, run_with_retry
from channel_sync.models import (
    ChannelDelta,
    DeliveryTarget,
    IngestResult,
    NewItem,
)
from channel_sync.storage.common import EPOCH, chunked, to_db_datetime, unique, utc_now
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import Channel, Chat, ChatChannel, Delivery, Item
from channel_sync.storage.views import encode_previews

logger = logging.getLogger(__name__)
LOOKUP_CHUNK_SIZE = 500


@dataclass(slots=True)
class _FeedUpdate:
    channel_id: str
    item_id: str
    published_at: datetime


class IngestionPipeline:
    """Sole writer of items and deliveries.

    Every call runs as one ``BEGIN IMMEDIATE`` transaction. All writes are
    upserts or unique inserts, so a transaction that failed on lock
    contention is replayed in full without side effects.
    """

    def __init__(
        self,
        database: Database,
        settings: IngestionSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.database = database
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self.retry_policy = RetryPolicy(
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )

    def ingest(
        self,
        channel_deltas: Sequence[ChannelDelta],
        new_items: Sequence[NewItem],
        fanout_targets: Collection[DeliveryTarget] | None = None,
    ) -> IngestResult:
        """Commit channel metadata, new items and their deliveries atomically.

        Deliveries are created only for items inserted by this call, for every
        chat subscribed to the item's channel at commit time. When
        ``fanout_targets`` is given, fan-out is narrowed to those pairs.

        ``has_pending_changes`` is raised only on channels that gained a newly
        inserted item. Metadata-only deltas and re-ingested items leave it
        untouched, so a routine sync does not make its channel due again.
        """

        deltas = _merge_deltas(channel_deltas)
        items = _unique_items(new_items)
        targets = frozenset(fanout_targets) if fanout_targets is not None else None
        if not deltas and not items:
            return IngestResult(attempts=0)

        def write(session: Session) -> IngestResult:
            return self._write(session, deltas=deltas, items=items, targets=targets)

        return self._run("Ingestion transaction", write)

    def apply_feed_update(
        self,
        channel_id: str,
        item_id: str,
        published_at: datetime,
        *,
        item: NewItem | None = None,
    ) -> IngestResult:
        """Apply one push notification.

        Records the push, advances the channel's last publication time and
        flags the channel for re-check. With a full ``item`` payload the item
        is also ingested and fanned out, exactly like a single-item ``ingest``.
        """

        if item is not None and (item.item_id != item_id or item.channel_id != channel_id):
            raise ValueError("Feed update item payload does not match item_id/channel_id")
        update = _FeedUpdate(channel_id=channel_id, item_id=item_id, published_at=published_at)
        items = [item] if item is not None else []

        def write(session: Session) -> IngestResult:
            return self._write(session, deltas=[], items=items, targets=None, feed_update=update)

        return self._run("Feed update transaction", write)

    def find_existing_item_ids(self, item_ids: Sequence[str]) -> list[str]:
        ids = unique(item_ids)
        with self.database.session() as session:
            existing = _existing_item_ids(session, ids)
        return [item_id for item_id in ids if item_id in existing]

    def find_missing_item_ids(self, item_ids: Sequence[str]) -> list[str]:
        ids = unique(item_ids)
        with self.database.session() as session:
            existing = _existing_item_ids(session, ids)
        return [item_id for item_id in ids if item_id not in existing]

    def set_preview_file_id(self, item_id: str, preview_file_id: str | None) -> None:
        """Cache the uploaded preview reference of an item."""

        with self.database.session() as session:
            result = session.exec(
                sa_update(Item)
                .where(col(Item.id) == item_id)
                .values(preview_file_id=preview_file_id),
            )
            if result.rowcount != 1:
                session.rollback()
                raise NotFoundError(message=f"Item is not found: {item_id}")
            session.commit()

    def delete_items_published_before(self, cutoff: datetime) -> int:
        """Age-based retention: drop old items and their pending deliveries."""

        cutoff_db = to_db_datetime(cutoff)
        with self.database.write_session() as session:
            old_item_ids = select(Item.id).where(col(Item.published_at) < cutoff_db)
            session.exec(delete(Delivery).where(col(Delivery.item_id).in_(old_item_ids)))
            result = session.exec(delete(Item).where(col(Item.published_at) < cutoff_db))
            session.commit()
        return result.rowcount

    def _run(self, description: str, write: Callable[[Session], IngestResult]) -> IngestResult:
        def attempt() -> IngestResult:
            with self.database.write_session() as session:
                outcome = write(session)
                session.commit()
            return outcome

        result, attempts = run_with_retry(
            attempt,
            policy=self.retry_policy,
            description=description,
            sleep=self.sleep,
        )
        result.attempts = attempts
        logger.debug(
            "%s committed (attempts=%s channels=%s items=%s skipped=%s deliveries=%s).",
            description,
            attempts,
            result.channels_upserted,
            result.items_inserted,
            result.items_skipped,
            result.deliveries_inserted,
        )
        return result

    def _write(
        self,
        session: Session,
        *,
        deltas: list[ChannelDelta],
        items: list[NewItem],
        targets: frozenset[DeliveryTarget] | None,
        feed_update: _FeedUpdate | None = None,
    ) -> IngestResult:
        now = to_db_datetime(self.clock())
        result = IngestResult()

        result.channels_upserted = self._upsert_channels(session, deltas, now=now)
        known_channels = {delta.channel_id for delta in deltas}
        referenced = {item.channel_id for item in items}
        if feed_update is not None:
            referenced.add(feed_update.channel_id)
        _require_channels(session, sorted(referenced - known_channels))

        inserted = self._insert_items(session, items, now=now)
        result.items_inserted = len(inserted)
        result.items_skipped = len(items) - len(inserted)
        result.inserted_item_ids = [item.item_id for item in inserted]

        result.deliveries_inserted = self._insert_deliveries(
            session,
            _plan_fanout(session, inserted, targets),
            now=now,
        )

        flagged = {item.channel_id for item in inserted}
        if feed_update is not None:
            _advance_last_item_published_at(
                session,
                channel_id=feed_update.channel_id,
                published_at=to_db_datetime(feed_update.published_at),
                now=now,
            )
            record_push_rows(
                session,
                [feed_update.item_id],
                channel_id=feed_update.channel_id,
                published_at=feed_update.published_at,
                now=self.clock(),
            )
            flagged.add(feed_update.channel_id)
        result.channels_flagged = _flag_pending_changes(session, sorted(flagged), now=now)
        return result

    def _upsert_channels(
        self,
        session: Session,
        deltas: list[ChannelDelta],
        *,
        now: datetime,
    ) -> int:
        upserted = 0
        for part in chunked(deltas, self.settings.chunk_size):
            statement = sqlite_insert(Channel).values(
                [
                    {
                        "id": delta.channel_id,
                        "service": delta.service,
                        "title": delta.title,
                        "url": delta.url,
                        "last_sync_at": _db_or_epoch(delta.last_sync_at),
                        "last_full_sync_at": _db_or_epoch(delta.last_full_sync_at),
                        "last_item_published_at": (
                            to_db_datetime(delta.last_item_published_at)
                            if delta.last_item_published_at is not None
                            else None
                        ),
                        "created_at": now,
                        "updated_at": now,
                    }
                    for delta in part
                ],
            )
            excluded = statement.excluded
            statement = statement.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "title": func.coalesce(excluded.title, col(Channel.title)),
                    "last_sync_at": func.max(excluded.last_sync_at, col(Channel.last_sync_at)),
                    "last_full_sync_at": func.max(
                        excluded.last_full_sync_at,
                        col(Channel.last_full_sync_at),
                    ),
                    "last_item_published_at": _non_regressing(
                        excluded.last_item_published_at,
                        col(Channel.last_item_published_at),
                    ),
                    "updated_at": excluded.updated_at,
                },
            )
            upserted += session.exec(statement).rowcount
        return upserted

    def _insert_items(
        self,
        session: Session,
        items: list[NewItem],
        *,
        now: datetime,
    ) -> list[NewItem]:
        if not items:
            return []
        existing = _existing_item_ids(session, [item.item_id for item in items])
        fresh = [item for item in items if item.item_id not in existing]
        for part in chunked(fresh, self.settings.chunk_size):
            session.exec(
                sqlite_insert(Item)
                .values(
                    [
                        {
                            "id": item.item_id,
                            "channel_id": item.channel_id,
                            "url": item.url,
                            "title": item.title,
                            "previews": encode_previews(item.previews),
                            "duration": item.duration,
                            "published_at": to_db_datetime(item.published_at),
                            "merged_id": item.merged_id,
                            "merged_channel_id": item.merged_channel_id,
                            "created_at": now,
                        }
                        for item in part
                    ],
                )
                .on_conflict_do_nothing(index_elements=["id"]),
            )
        return fresh

    def _insert_deliveries(
        self,
        session: Session,
        targets: list[DeliveryTarget],
        *,
        now: datetime,
    ) -> int:
        inserted = 0
        for part in chunked(targets, self.settings.chunk_size):
            result = session.exec(
                sqlite_insert(Delivery)
                .values(
                    [
                        {"chat_id": target.chat_id, "item_id": target.item_id, "created_at": now}
                        for target in part
                    ],
                )
                .on_conflict_do_nothing(index_elements=["chat_id", "item_id"]),
            )
            inserted += result.rowcount
        return inserted


def _plan_fanout(
    session: Session,
    items: list[NewItem],
    targets: frozenset[DeliveryTarget] | None,
) -> list[DeliveryTarget]:
    deliverable = [item for item in items if item.merged_id is None]
    if not deliverable:
        return []

    channel_ids = unique([item.channel_id for item in deliverable])
    subscribers: dict[str, list[tuple[str, bool]]] = defaultdict(list)
    for part in chunked(channel_ids, LOOKUP_CHUNK_SIZE):
        rows = session.exec(
            select(ChatChannel.channel_id, Chat.id, Chat.is_skip_short_items)
            .join(Chat, col(Chat.id) == col(ChatChannel.chat_id))
            .where(col(ChatChannel.channel_id).in_(part))
            .order_by(col(ChatChannel.id)),
        ).all()
        for channel_id, chat_id, skip_short in rows:
            subscribers[channel_id].append((chat_id, bool(skip_short)))

    planned: list[DeliveryTarget] = []
    for item in deliverable:
        for chat_id, skip_short in subscribers.get(item.channel_id, []):
            if item.is_short and skip_short:
                continue
            target = DeliveryTarget(chat_id=chat_id, item_id=item.item_id)
            if targets is not None and target not in targets:
                continue
            planned.append(target)
    return planned


def _existing_item_ids(session: Session, item_ids: list[str]) -> set[str]:
    found: set[str] = set()
    for part in chunked(item_ids, LOOKUP_CHUNK_SIZE):
        found.update(session.exec(select(Item.id).where(col(Item.id).in_(part))).all())
    return found


def _require_channels(session: Session, channel_ids: list[str]) -> None:
    if not channel_ids:
        return
    found: set[str] = set()
    for part in chunked(channel_ids, LOOKUP_CHUNK_SIZE):
        found.update(session.exec(select(Channel.id).where(col(Channel.id).in_(part))).all())
    missing = [channel_id for channel_id in channel_ids if channel_id not in found]
    if missing:
        raise NotFoundError(message=f"Channel is not found: {', '.join(missing)}")


def _advance_last_item_published_at(
    session: Session,
    *,
    channel_id: str,
    published_at: datetime,
    now: datetime,
) -> None:
    session.exec(
        sa_update(Channel)
        .where(col(Channel.id) == channel_id)
        .values(
            last_item_published_at=case(
                (col(Channel.last_item_published_at).is_(None), published_at),
                (col(Channel.last_item_published_at) < published_at, published_at),
                else_=col(Channel.last_item_published_at),
            ),
            updated_at=now,
        ),
    )


def _flag_pending_changes(session: Session, channel_ids: list[str], *, now: datetime) -> int:
    flagged = 0
    for part in chunked(channel_ids, LOOKUP_CHUNK_SIZE):
        result = session.exec(
            sa_update(Channel)
            .where(col(Channel.id).in_(part))
            .values(has_pending_changes=True, updated_at=now),
        )
        flagged += result.rowcount
    return flagged


def _non_regressing(candidate: ColumnElement, current: ColumnElement) -> ColumnElement:
    return case(
        (candidate.is_(None), current),
        (current.is_(None), candidate),
        (candidate > current, candidate),
        else_=current,
    )


def _db_or_epoch(value: datetime | None) -> datetime:
    if value is None:
        return EPOCH
    return to_db_datetime(value)


def _merge_deltas(deltas: Sequence[ChannelDelta]) -> list[ChannelDelta]:
    merged: dict[str, ChannelDelta] = {}
    for delta in deltas:
        current = merged.get(delta.channel_id)
        if current is None:
            merged[delta.channel_id] = ChannelDelta(
                channel_id=delta.channel_id,
                service=delta.service,
                url=delta.url,
                title=delta.title,
                last_sync_at=delta.last_sync_at,
                last_full_sync_at=delta.last_full_sync_at,
                last_item_published_at=delta.last_item_published_at,
            )
            continue
        current.title = delta.title if delta.title is not None else current.title
        current.last_sync_at = _latest(current.last_sync_at, delta.last_sync_at)
        current.last_full_sync_at = _latest(current.last_full_sync_at, delta.last_full_sync_at)
        current.last_item_published_at = _latest(
            current.last_item_published_at,
            delta.last_item_published_at,
        )
    return list(merged.values())


def _latest(left: datetime | None, right: datetime | None) -> datetime | None:
    if left is None:
        return right
    if right is None:
        return left
    return max(left, right)


def _unique_items(items: Sequence[NewItem]) -> list[NewItem]:
    seen: set[str] = set()
    result: list[NewItem] = []
    for item in items:
        if item.item_id in seen:
            continue
        seen.add(item.item_id)
        result.append(item)
    return result
