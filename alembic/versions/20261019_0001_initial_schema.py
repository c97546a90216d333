"""Initial channel sync schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

EPOCH = "1970-01-01 00:00:00.000000"


def upgrade() -> None:
    op.create_table(
        "chats",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("linked_channel_id", sa.String(), nullable=True),
        sa.Column("is_hide_preview", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_skip_short_items", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "send_timeout_expires_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH,
        ),
        sa.Column("parent_chat_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["linked_channel_id"], ["chats.id"]),
        sa.ForeignKeyConstraint(["parent_chat_id"], ["chats.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("linked_channel_id"),
    )
    op.create_index(
        "ix_chats_send_timeout_expires_at",
        "chats",
        ["send_timeout_expires_at"],
    )
    op.create_index("ix_chats_parent_chat_id", "chats", ["parent_chat_id"])

    op.create_table(
        "channels",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("service", sa.String(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("has_pending_changes", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_item_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=False, server_default=EPOCH),
        sa.Column(
            "last_full_sync_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH,
        ),
        sa.Column(
            "sync_timeout_expires_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH,
        ),
        sa.Column(
            "subscription_expires_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH,
        ),
        sa.Column(
            "subscription_timeout_expires_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=EPOCH,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_channels_service", "channels", ["service"])
    op.create_index("ix_channels_has_pending_changes", "channels", ["has_pending_changes"])
    op.create_index("ix_channels_last_item_published_at", "channels", ["last_item_published_at"])
    op.create_index("ix_channels_last_sync_at", "channels", ["last_sync_at"])
    op.create_index(
        "ix_channels_sync_timeout_expires_at",
        "channels",
        ["sync_timeout_expires_at"],
    )
    op.create_index(
        "idx_channels_subscription_expiry",
        "channels",
        ["subscription_expires_at", "subscription_timeout_expires_at"],
    )

    op.create_table(
        "chat_channels",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("chat_id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"]),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chat_id", "channel_id", name="uq_chat_channels_chat_channel"),
    )
    op.create_index("ix_chat_channels_chat_id", "chat_channels", ["chat_id"])
    op.create_index("ix_chat_channels_channel_id", "chat_channels", ["channel_id"])
    op.create_index("ix_chat_channels_created_at", "chat_channels", ["created_at"])

    op.create_table(
        "items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("previews", sa.Text(), nullable=False),
        sa.Column("duration", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("preview_file_id", sa.Text(), nullable=True),
        sa.Column("merged_id", sa.String(), nullable=True),
        sa.Column("merged_channel_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_items_channel_id", "items", ["channel_id"])
    op.create_index("ix_items_published_at", "items", ["published_at"])

    op.create_table(
        "deliveries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("chat_id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["chat_id"], ["chats.id"]),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chat_id", "item_id", name="uq_deliveries_chat_item"),
    )
    op.create_index("ix_deliveries_chat_id", "deliveries", ["chat_id"])
    op.create_index("ix_deliveries_item_id", "deliveries", ["item_id"])

    op.create_table(
        "push_records",
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_push_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("item_id"),
    )
    op.create_index("ix_push_records_last_push_at", "push_records", ["last_push_at"])


def downgrade() -> None:
    op.drop_table("push_records")
    op.drop_table("deliveries")
    op.drop_table("items")
    op.drop_table("chat_channels")
    op.drop_table("channels")
    op.drop_table("chats")
