"""Read side of pending deliveries for the external delivery worker."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from sqlalchemy import update as sa_update
from sqlmodel import col, delete, select

from channel_sync.config import DeliverySettings
from channel_sync.errors import NotFoundError
from channel_sync.models import ItemView
from channel_sync.storage.common import chunked, to_db_datetime, unique, utc_now
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import Channel, Chat, Delivery, Item
from channel_sync.storage.views import to_item_view

CHUNK_SIZE = 500


class DeliveryQueue:
    """Pending (chat, item) pairs; a row exists until delivery is acknowledged."""

    def __init__(
        self,
        database: Database,
        settings: DeliverySettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.settings = settings
        self.clock = clock

    def list_undelivered_for_group(self, chat_id: str, limit: int) -> list[str]:
        """Return pending item ids of one chat, oldest publication first."""

        if limit <= 0:
            return []
        with self.database.session() as session:
            rows = session.exec(
                select(Delivery.item_id)
                .join(Item, col(Item.id) == col(Delivery.item_id))
                .where(Delivery.chat_id == chat_id)
                .order_by(col(Item.published_at).asc(), col(Item.id).asc())
                .limit(limit),
            ).all()
        return list(rows)

    def acknowledge_delivered(self, chat_id: str, item_ids: Sequence[str]) -> int:
        ids = unique(item_ids)
        if not ids:
            return 0
        deleted = 0
        with self.database.session() as session:
            for part in chunked(ids, CHUNK_SIZE):
                result = session.exec(
                    delete(Delivery).where(
                        col(Delivery.chat_id) == chat_id,
                        col(Delivery.item_id).in_(part),
                    ),
                )
                deleted += result.rowcount
            session.commit()
        return deleted

    def list_groups_with_pending(self, limit: int | None = None) -> list[str]:
        """Chats with pending deliveries that are not in a send backoff."""

        now = to_db_datetime(self.clock())
        statement = (
            select(Chat.id)
            .where(
                col(Chat.send_timeout_expires_at) < now,
                col(Chat.id).in_(select(Delivery.chat_id)),
            )
            .order_by(col(Chat.id))
        )
        if limit is not None:
            if limit <= 0:
                return []
            statement = statement.limit(limit)
        with self.database.session() as session:
            rows = session.exec(statement).all()
        return list(rows)

    def set_send_timeout(self, chat_ids: Sequence[str]) -> int:
        """Back off delivery to chats after a send error."""

        ids = unique(chat_ids)
        if not ids:
            return 0
        now = self.clock()
        expires_at = to_db_datetime(
            now + timedelta(minutes=self.settings.send_timeout_after_error_minutes),
        )
        updated = 0
        with self.database.session() as session:
            for part in chunked(ids, CHUNK_SIZE):
                result = session.exec(
                    sa_update(Chat)
                    .where(col(Chat.id).in_(part))
                    .values(send_timeout_expires_at=expires_at, updated_at=to_db_datetime(now)),
                )
                updated += result.rowcount
            session.commit()
        return updated

    def get_item_with_channel(self, item_id: str) -> ItemView:
        with self.database.session() as session:
            row = session.exec(
                select(Item, Channel)
                .join(Channel, col(Channel.id) == col(Item.channel_id))
                .where(Item.id == item_id),
            ).first()
        if row is None:
            raise NotFoundError(message=f"Item is not found: {item_id}")
        item, channel = row
        return to_item_view(item, channel)
