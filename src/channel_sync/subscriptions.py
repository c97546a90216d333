"""Subscription graph between subscriber groups (chats) and channels.

Cascades are explicit: deleting a channel removes its items' deliveries, its
items and its subscription edges before the channel row; deleting a chat
removes its deliveries, its edges and its child chats. Foreign keys carry no
``ON DELETE`` actions, so an out-of-order delete fails instead of silently
cascading.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, delete, select

from channel_sync.errors import IntegrityViolationError, NotFoundError, PolicyRejectedError
from channel_sync.models import (
    ChannelPopularity,
    ChannelRef,
    ChannelView,
    ChatPreferences,
    ChatView,
)
from channel_sync.storage.common import chunked, to_db_datetime, unique, utc_now
from channel_sync.storage.database import Database
from channel_sync.storage.sqlmodel_models import (
    Channel,
    Chat,
    ChatChannel,
    Delivery,
    Item,
)
from channel_sync.storage.views import to_channel_view, to_chat_view

logger = logging.getLogger(__name__)
DELETE_CHUNK_SIZE = 500


class SubscriptionGraph:
    """Owns chat, channel and subscription edge lifecycle."""

    def __init__(
        self,
        database: Database,
        *,
        channel_deny_list: Sequence[str] = (),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.channel_deny_list = frozenset(channel_deny_list)
        self.clock = clock

    def is_denied(self, channel_id: str) -> bool:
        return channel_id in self.channel_deny_list

    def subscribe(self, chat_id: str, channel: ChannelRef) -> bool:
        """Subscribe a chat to a channel, creating both on first use.

        Returns ``False`` when the subscription already existed.
        """

        channel_id = channel.channel_id
        if self.is_denied(channel_id):
            raise PolicyRejectedError(message=f"Channel in deny list: {channel_id}")

        now = to_db_datetime(self.clock())
        with self.database.write_session() as session:
            _insert_chat_if_missing(session, chat_id=chat_id, now=now)
            session.exec(
                sqlite_insert(Channel)
                .values(
                    id=channel_id,
                    service=channel.service,
                    title=channel.title,
                    url=channel.url,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["id"]),
            )
            result = session.exec(
                sqlite_insert(ChatChannel)
                .values(chat_id=chat_id, channel_id=channel_id, created_at=now)
                .on_conflict_do_nothing(index_elements=["chat_id", "channel_id"]),
            )
            session.commit()
        created = result.rowcount == 1
        if created:
            logger.debug("Subscribed chat %s to channel %s.", chat_id, channel_id)
        return created

    def unsubscribe(self, chat_id: str, channel_id: str) -> bool:
        """Remove one edge. Orphaned rows stay until the next orphan sweep."""

        with self.database.session() as session:
            result = session.exec(
                delete(ChatChannel).where(
                    col(ChatChannel.chat_id) == chat_id,
                    col(ChatChannel.channel_id) == channel_id,
                ),
            )
            session.commit()
        return result.rowcount > 0

    def list_channels_for_group(self, chat_id: str) -> list[ChannelView]:
        with self.database.session() as session:
            rows = session.exec(
                select(Channel)
                .join(ChatChannel, col(ChatChannel.channel_id) == col(Channel.id))
                .where(ChatChannel.chat_id == chat_id)
                .order_by(col(ChatChannel.created_at), col(ChatChannel.id)),
            ).all()
            return [to_channel_view(row) for row in rows]

    def list_groups_for_channel(self, channel_id: str) -> list[ChatView]:
        with self.database.session() as session:
            rows = session.exec(
                select(Chat)
                .join(ChatChannel, col(ChatChannel.chat_id) == col(Chat.id))
                .where(ChatChannel.channel_id == channel_id)
                .order_by(col(ChatChannel.created_at), col(ChatChannel.id)),
            ).all()
            return [to_chat_view(row) for row in rows]

    def count_channels_for_group(self, chat_id: str) -> int:
        with self.database.session() as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(ChatChannel)
                    .where(col(ChatChannel.chat_id) == chat_id),
                ).one(),
            )

    def count_subscribed_groups(self) -> int:
        with self.database.session() as session:
            return int(
                session.exec(select(func.count(func.distinct(col(ChatChannel.chat_id))))).one(),
            )

    def count_subscribed_channels(self) -> int:
        with self.database.session() as session:
            return int(
                session.exec(
                    select(func.count(func.distinct(col(ChatChannel.channel_id)))),
                ).one(),
            )

    def top_channels_by_service(
        self,
        service: str,
        *,
        since: datetime,
        limit: int = 10,
    ) -> list[ChannelPopularity]:
        """Most subscribed channels of a service that published after ``since``."""

        chat_count = func.count(col(ChatChannel.chat_id)).label("chat_count")
        with self.database.session() as session:
            rows = session.exec(
                select(Channel.id, Channel.service, Channel.title, chat_count)
                .join(ChatChannel, col(ChatChannel.channel_id) == col(Channel.id))
                .where(
                    Channel.service == service,
                    col(Channel.last_item_published_at) > to_db_datetime(since),
                )
                .group_by(col(Channel.id))
                .order_by(chat_count.desc(), col(Channel.id))
                .limit(max(1, limit)),
            ).all()
        return [
            ChannelPopularity(
                channel_id=channel_id,
                service=channel_service,
                title=title,
                chat_count=int(count),
            )
            for channel_id, channel_service, title, count in rows
        ]

    def get_channel(self, channel_id: str) -> ChannelView:
        with self.database.session() as session:
            row = session.get(Channel, channel_id)
            if row is None:
                raise NotFoundError(message=f"Channel is not found: {channel_id}")
            return to_channel_view(row)

    def get_channels(self, channel_ids: Sequence[str]) -> list[ChannelView]:
        ids = unique(channel_ids)
        views: list[ChannelView] = []
        with self.database.session() as session:
            for part in chunked(ids, DELETE_CHUNK_SIZE):
                rows = session.exec(select(Channel).where(col(Channel.id).in_(part))).all()
                views.extend(to_channel_view(row) for row in rows)
        return views

    def ensure_group(self, chat_id: str) -> ChatView:
        now = to_db_datetime(self.clock())
        with self.database.session() as session:
            _insert_chat_if_missing(session, chat_id=chat_id, now=now)
            session.commit()
            row = session.get(Chat, chat_id)
            if row is None:
                raise RuntimeError(f"Chat row not found after insert: {chat_id}")
            return to_chat_view(row)

    def get_group(self, chat_id: str) -> ChatView:
        with self.database.session() as session:
            row = session.get(Chat, chat_id)
            if row is None:
                raise NotFoundError(message=f"Chat is not found: {chat_id}")
            return to_chat_view(row)

    def get_groups(self, chat_ids: Sequence[str]) -> list[ChatView]:
        ids = unique(chat_ids)
        views: list[ChatView] = []
        with self.database.session() as session:
            for part in chunked(ids, DELETE_CHUNK_SIZE):
                rows = session.exec(select(Chat).where(col(Chat.id).in_(part))).all()
                views.extend(to_chat_view(row) for row in rows)
        return views

    def list_group_ids(self, *, offset: int, limit: int) -> list[str]:
        if limit <= 0:
            return []
        with self.database.session() as session:
            rows = session.exec(
                select(Chat.id).order_by(col(Chat.id)).offset(max(0, offset)).limit(limit),
            ).all()
        return list(rows)

    def set_group_preferences(self, chat_id: str, preferences: ChatPreferences) -> ChatView:
        with self.database.session() as session:
            row = session.get(Chat, chat_id)
            if row is None:
                raise NotFoundError(message=f"Chat is not found: {chat_id}")
            if preferences.is_hide_preview is not None:
                row.is_hide_preview = preferences.is_hide_preview
            if preferences.is_muted is not None:
                row.is_muted = preferences.is_muted
            if preferences.is_skip_short_items is not None:
                row.is_skip_short_items = preferences.is_skip_short_items
            row.updated_at = to_db_datetime(self.clock())
            session.add(row)
            session.commit()
            session.refresh(row)
            return to_chat_view(row)

    def link_discussion_channel(self, chat_id: str, linked_chat_id: str) -> ChatView:
        """Pair a chat with a discussion channel, created as its child group."""

        if chat_id == linked_chat_id:
            raise ValueError("A chat cannot be linked to itself")
        now = to_db_datetime(self.clock())
        with self.database.write_session() as session:
            try:
                _insert_chat_if_missing(session, chat_id=chat_id, now=now)
                session.add(
                    Chat(
                        id=linked_chat_id,
                        parent_chat_id=chat_id,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                session.flush()
                session.exec(
                    sa_update(Chat)
                    .where(col(Chat.id) == chat_id)
                    .values(linked_channel_id=linked_chat_id, updated_at=now),
                )
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise IntegrityViolationError(
                    message=f"Chat {linked_chat_id} already exists or is linked elsewhere",
                ) from error
            row = session.get(Chat, chat_id)
            if row is None:
                raise NotFoundError(message=f"Chat is not found: {chat_id}")
            return to_chat_view(row)

    def change_group_id(self, chat_id: str, new_chat_id: str) -> ChatView:
        """Move a chat and every reference to it to a new id."""

        now = to_db_datetime(self.clock())
        with self.database.write_session() as session:
            current = session.get(Chat, chat_id)
            if current is None:
                raise NotFoundError(message=f"Chat is not found: {chat_id}")
            if session.get(Chat, new_chat_id) is not None:
                raise IntegrityViolationError(message=f"Chat already exists: {new_chat_id}")

            session.add(
                Chat(
                    id=new_chat_id,
                    linked_channel_id=None,
                    is_hide_preview=current.is_hide_preview,
                    is_muted=current.is_muted,
                    is_skip_short_items=current.is_skip_short_items,
                    send_timeout_expires_at=current.send_timeout_expires_at,
                    parent_chat_id=current.parent_chat_id,
                    created_at=current.created_at,
                    updated_at=now,
                ),
            )
            linked_channel_id = current.linked_channel_id
            current.linked_channel_id = None
            session.add(current)
            session.flush()

            session.exec(
                sa_update(ChatChannel)
                .where(col(ChatChannel.chat_id) == chat_id)
                .values(chat_id=new_chat_id),
            )
            session.exec(
                sa_update(Delivery)
                .where(col(Delivery.chat_id) == chat_id)
                .values(chat_id=new_chat_id),
            )
            session.exec(
                sa_update(Chat)
                .where(col(Chat.parent_chat_id) == chat_id)
                .values(parent_chat_id=new_chat_id, updated_at=now),
            )
            session.exec(
                sa_update(Chat)
                .where(col(Chat.linked_channel_id) == chat_id)
                .values(linked_channel_id=new_chat_id, updated_at=now),
            )
            session.exec(
                sa_update(Chat)
                .where(col(Chat.id) == new_chat_id)
                .values(linked_channel_id=linked_channel_id),
            )
            session.exec(delete(Chat).where(col(Chat.id) == chat_id))
            session.commit()

            row = session.get(Chat, new_chat_id)
            if row is None:
                raise RuntimeError(f"Chat row not found after id change: {new_chat_id}")
            session.refresh(row)
            return to_chat_view(row)

    def delete_group(self, chat_id: str) -> int:
        """Delete a chat with its child chats, edges and pending deliveries."""

        return self.delete_groups([chat_id])

    def delete_groups(self, chat_ids: Sequence[str]) -> int:
        ids = unique(chat_ids)
        if not ids:
            return 0
        with self.database.write_session() as session:
            deleted = _delete_chats(session, ids)
            session.commit()
        return deleted

    def delete_channels(self, channel_ids: Sequence[str]) -> int:
        """Delete channels with their items, deliveries and edges."""

        ids = unique(channel_ids)
        if not ids:
            return 0
        with self.database.write_session() as session:
            deleted = _delete_channels(session, ids)
            session.commit()
        return deleted

    def purge_denied_channels(self, channel_ids: Sequence[str] | None = None) -> int:
        """Remove deny-listed channels, run once at startup.

        Defaults to the configured deny list.
        """

        ids = sorted(self.channel_deny_list) if channel_ids is None else list(channel_ids)
        deleted = self.delete_channels(ids)
        if deleted:
            logger.info("Purged %s deny-listed channel(s).", deleted)
        return deleted

    def delete_orphan_channels(self) -> int:
        """Delete channels that no chat subscribes to."""

        with self.database.write_session() as session:
            orphan_ids = list(
                session.exec(
                    select(Channel.id).where(
                        col(Channel.id).not_in(select(ChatChannel.channel_id).distinct()),
                    ),
                ).all(),
            )
            deleted = _delete_channels(session, orphan_ids) if orphan_ids else 0
            session.commit()
        return deleted

    def delete_orphan_groups(self) -> int:
        """Delete top-level chats without subscriptions, with their child chats."""

        with self.database.write_session() as session:
            orphan_ids = list(
                session.exec(
                    select(Chat.id).where(
                        col(Chat.parent_chat_id).is_(None),
                        col(Chat.id).not_in(select(ChatChannel.chat_id).distinct()),
                    ),
                ).all(),
            )
            deleted = _delete_chats(session, orphan_ids) if orphan_ids else 0
            session.commit()
        return deleted


def _insert_chat_if_missing(session: Session, *, chat_id: str, now: datetime) -> None:
    session.exec(
        sqlite_insert(Chat)
        .values(id=chat_id, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["id"]),
    )


def _delete_channels(session: Session, channel_ids: list[str]) -> int:
    deleted = 0
    for part in chunked(channel_ids, DELETE_CHUNK_SIZE):
        item_ids = select(Item.id).where(col(Item.channel_id).in_(part))
        session.exec(delete(Delivery).where(col(Delivery.item_id).in_(item_ids)))
        session.exec(delete(Item).where(col(Item.channel_id).in_(part)))
        session.exec(delete(ChatChannel).where(col(ChatChannel.channel_id).in_(part)))
        result = session.exec(delete(Channel).where(col(Channel.id).in_(part)))
        deleted += result.rowcount
    return deleted


def _delete_chats(session: Session, chat_ids: list[str]) -> int:
    all_ids = _collect_descendant_chats(session, chat_ids)
    deleted = 0
    for part in chunked(all_ids, DELETE_CHUNK_SIZE):
        session.exec(
            sa_update(Chat)
            .where(col(Chat.linked_channel_id).in_(part))
            .values(linked_channel_id=None),
        )
    for part in chunked(all_ids, DELETE_CHUNK_SIZE):
        session.exec(delete(Delivery).where(col(Delivery.chat_id).in_(part)))
        session.exec(delete(ChatChannel).where(col(ChatChannel.chat_id).in_(part)))
    for part in chunked(all_ids, DELETE_CHUNK_SIZE):
        session.exec(
            sa_update(Chat).where(col(Chat.id).in_(part)).values(parent_chat_id=None),
        )
    for part in chunked(all_ids, DELETE_CHUNK_SIZE):
        result = session.exec(delete(Chat).where(col(Chat.id).in_(part)))
        deleted += result.rowcount
    return deleted


def _collect_descendant_chats(session: Session, chat_ids: list[str]) -> list[str]:
    collected = unique(chat_ids)
    seen = set(collected)
    frontier = list(collected)
    while frontier:
        children: list[str] = []
        for part in chunked(frontier, DELETE_CHUNK_SIZE):
            children.extend(
                session.exec(select(Chat.id).where(col(Chat.parent_chat_id).in_(part))).all(),
            )
        frontier = [child for child in children if child not in seen]
        seen.update(frontier)
        collected.extend(frontier)
    return collected
