"""Row to read-model conversions shared by storage components."""

from __future__ import annotations

import json

from channel_sync.models import ChannelView, ChatView, ItemView
from channel_sync.storage.common import optional_utc, to_utc_aware_datetime
from channel_sync.storage.sqlmodel_models import Channel, Chat, Item


def to_channel_view(row: Channel) -> ChannelView:
    return ChannelView(
        channel_id=row.id,
        service=row.service,
        title=row.title,
        url=row.url,
        has_pending_changes=bool(row.has_pending_changes),
        last_item_published_at=optional_utc(row.last_item_published_at),
        last_sync_at=to_utc_aware_datetime(row.last_sync_at),
        last_full_sync_at=to_utc_aware_datetime(row.last_full_sync_at),
        sync_timeout_expires_at=to_utc_aware_datetime(row.sync_timeout_expires_at),
        subscription_expires_at=to_utc_aware_datetime(row.subscription_expires_at),
        subscription_timeout_expires_at=to_utc_aware_datetime(
            row.subscription_timeout_expires_at,
        ),
    )


def to_chat_view(row: Chat) -> ChatView:
    return ChatView(
        chat_id=row.id,
        linked_channel_id=row.linked_channel_id,
        is_hide_preview=bool(row.is_hide_preview),
        is_muted=bool(row.is_muted),
        is_skip_short_items=bool(row.is_skip_short_items),
        send_timeout_expires_at=to_utc_aware_datetime(row.send_timeout_expires_at),
        parent_chat_id=row.parent_chat_id,
    )


def to_item_view(row: Item, channel: Channel) -> ItemView:
    return ItemView(
        item_id=row.id,
        url=row.url,
        title=row.title,
        previews=decode_previews(row.previews),
        duration=row.duration,
        published_at=to_utc_aware_datetime(row.published_at),
        preview_file_id=row.preview_file_id,
        merged_id=row.merged_id,
        merged_channel_id=row.merged_channel_id,
        channel=to_channel_view(channel),
    )


def encode_previews(previews: list[str]) -> str:
    return json.dumps(previews, ensure_ascii=False)


def decode_previews(raw: str) -> list[str]:
    decoded = json.loads(raw) if raw else []
    if not isinstance(decoded, list):
        return []
    return [str(value) for value in decoded]
