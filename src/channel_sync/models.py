"""Domain models for scheduling, ingestion and delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

CHANNEL_ID_SEPARATOR = ":"


def wrap_channel_id(service: str, local_id: str) -> str:
    """Build the stored channel id from a service name and a service-local id."""

    if not service or CHANNEL_ID_SEPARATOR in service:
        raise ValueError(f"Invalid service name: {service!r}")
    if not local_id:
        raise ValueError("Channel local id must not be empty")
    return f"{service}{CHANNEL_ID_SEPARATOR}{local_id}"


def unwrap_channel_id(channel_id: str) -> tuple[str, str]:
    """Split a stored channel id into ``(service, local_id)``."""

    service, separator, local_id = channel_id.partition(CHANNEL_ID_SEPARATOR)
    if not separator or not service or not local_id:
        raise ValueError(f"Invalid channel id: {channel_id!r}")
    return service, local_id


@dataclass(slots=True)
class ChannelRef:
    """Channel identity and display fields known at subscribe time."""

    service: str
    local_id: str
    url: str
    title: str | None = None

    @property
    def channel_id(self) -> str:
        return wrap_channel_id(self.service, self.local_id)


@dataclass(slots=True)
class ChannelDelta:
    """Channel metadata reported by a fetcher after checking a channel.

    ``None`` fields keep the stored value. Timestamps never move backward.
    """

    channel_id: str
    service: str
    url: str
    title: str | None = None
    last_sync_at: datetime | None = None
    last_full_sync_at: datetime | None = None
    last_item_published_at: datetime | None = None


@dataclass(slots=True)
class NewItem:
    """Item payload produced by a fetcher.

    ``is_short`` only drives fan-out for groups that skip short items and is
    not persisted.
    """

    item_id: str
    channel_id: str
    url: str
    title: str
    published_at: datetime
    previews: list[str] = field(default_factory=list)
    duration: str | None = None
    merged_id: str | None = None
    merged_channel_id: str | None = None
    is_short: bool = False


@dataclass(slots=True, frozen=True)
class DeliveryTarget:
    """One (group, item) fan-out pair."""

    chat_id: str
    item_id: str


@dataclass(slots=True)
class IngestResult:
    """Counts of rows written by one committed ingestion transaction."""

    channels_upserted: int = 0
    items_inserted: int = 0
    items_skipped: int = 0
    deliveries_inserted: int = 0
    channels_flagged: int = 0
    attempts: int = 1
    inserted_item_ids: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SyncIdle:
    """Channel is not claimed by any sync worker."""


@dataclass(slots=True, frozen=True)
class SyncClaimed:
    """Channel was claimed and stays excluded until ``expires_at``."""

    expires_at: datetime


SyncClaimState = SyncIdle | SyncClaimed


@dataclass(slots=True)
class ChannelView:
    """Read model of a stored channel."""

    channel_id: str
    service: str
    title: str | None
    url: str
    has_pending_changes: bool
    last_item_published_at: datetime | None
    last_sync_at: datetime
    last_full_sync_at: datetime
    sync_timeout_expires_at: datetime
    subscription_expires_at: datetime
    subscription_timeout_expires_at: datetime


@dataclass(slots=True)
class ChatView:
    """Read model of a subscriber group."""

    chat_id: str
    linked_channel_id: str | None
    is_hide_preview: bool
    is_muted: bool
    is_skip_short_items: bool
    send_timeout_expires_at: datetime
    parent_chat_id: str | None


@dataclass(slots=True)
class ChatPreferences:
    """Per-group delivery preferences. ``None`` leaves a preference unchanged."""

    is_hide_preview: bool | None = None
    is_muted: bool | None = None
    is_skip_short_items: bool | None = None


@dataclass(slots=True)
class ItemView:
    """Read model of a stored item with its channel."""

    item_id: str
    url: str
    title: str
    previews: list[str]
    duration: str | None
    published_at: datetime
    preview_file_id: str | None
    merged_id: str | None
    merged_channel_id: str | None
    channel: ChannelView


@dataclass(slots=True)
class ChannelPopularity:
    """Channel with its subscriber count."""

    channel_id: str
    service: str
    title: str | None
    chat_count: int


@dataclass(slots=True)
class SweepStep:
    """Outcome of one best-effort cleanup step."""

    name: str
    deleted: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class SweepReport:
    """Outcome of one maintenance sweep."""

    steps: list[SweepStep] = field(default_factory=list)

    @property
    def failed_steps(self) -> list[SweepStep]:
        return [step for step in self.steps if not step.ok]

    def deleted(self, name: str) -> int:
        for step in self.steps:
            if step.name == name:
                return step.deleted
        return 0
