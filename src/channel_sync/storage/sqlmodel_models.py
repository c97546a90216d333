"""SQLModel ORM tables for channel sync storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlmodel import Field, SQLModel

from channel_sync.storage.common import EPOCH

EPOCH_SERVER_DEFAULT = "1970-01-01 00:00:00.000000"


class Chat(SQLModel, table=True):
    __tablename__ = "chats"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    linked_channel_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("chats.id"), nullable=True, unique=True),
    )
    is_hide_preview: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=false()),
    )
    is_muted: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=false()),
    )
    is_skip_short_items: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=false()),
    )
    send_timeout_expires_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            index=True,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    parent_chat_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("chats.id"), nullable=True, index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Channel(SQLModel, table=True):
    __tablename__ = "channels"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "idx_channels_subscription_expiry",
            "subscription_expires_at",
            "subscription_timeout_expires_at",
        ),
    )

    id: str = Field(primary_key=True)
    service: str = Field(index=True)
    title: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    url: str = Field(sa_column=Column(Text, nullable=False))
    has_pending_changes: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, index=True, server_default=false()),
    )
    last_item_published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    last_sync_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            index=True,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    last_full_sync_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    sync_timeout_expires_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            index=True,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    subscription_expires_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    subscription_timeout_expires_at: datetime = Field(
        default=EPOCH,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH_SERVER_DEFAULT,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatChannel(SQLModel, table=True):
    __tablename__ = "chat_channels"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("chat_id", "channel_id", name="uq_chat_channels_chat_channel"),
    )

    id: int | None = Field(default=None, primary_key=True)
    chat_id: str = Field(sa_column=Column(String, ForeignKey("chats.id"), nullable=False, index=True))
    channel_id: str = Field(
        sa_column=Column(String, ForeignKey("channels.id"), nullable=False, index=True),
    )
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class Item(SQLModel, table=True):
    __tablename__ = "items"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    channel_id: str = Field(
        sa_column=Column(String, ForeignKey("channels.id"), nullable=False, index=True),
    )
    url: str
    title: str
    previews: str = Field(sa_column=Column(Text, nullable=False))
    duration: str | None = None
    published_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    preview_file_id: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    merged_id: str | None = None
    merged_channel_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Delivery(SQLModel, table=True):
    __tablename__ = "deliveries"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("chat_id", "item_id", name="uq_deliveries_chat_item"),
    )

    id: int | None = Field(default=None, primary_key=True)
    chat_id: str = Field(sa_column=Column(String, ForeignKey("chats.id"), nullable=False, index=True))
    item_id: str = Field(
        sa_column=Column(String, ForeignKey("items.id"), nullable=False, index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PushRecord(SQLModel, table=True):
    __tablename__ = "push_records"  # type: ignore[bad-override]

    item_id: str = Field(primary_key=True)
    channel_id: str | None = None
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    last_push_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
