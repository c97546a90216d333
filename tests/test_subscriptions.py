from __future__ import annotations

from datetime import datetime, timedelta

import allure
import pytest

from channel_sync.errors import IntegrityViolationError, NotFoundError, PolicyRejectedError
from channel_sync.models import (
    ChannelDelta,
    ChannelRef,
    ChatPreferences,
    NewItem,
    unwrap_channel_id,
)
from channel_sync.subscriptions import SubscriptionGraph

pytestmark = [
    allure.epic("Channel Sync"),
    allure.feature("Subscription Graph"),
]


def _ref(local_id: str, *, service: str = "yt", title: str | None = None) -> ChannelRef:
    return ChannelRef(
        service=service,
        local_id=local_id,
        url=f"https://{service}.test/{local_id}",
        title=title,
    )


def _count(database, table: str) -> int:
    return int(database._connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])


def _publish(core, channel_id: str, item_id: str) -> None:
    core.ingestion.ingest(
        [],
        [
            NewItem(
                item_id=item_id,
                channel_id=channel_id,
                url=f"https://yt.test/{item_id}",
                title=item_id,
                published_at=core.sync.clock(),
            ),
        ],
    )


def test_subscribe_creates_group_channel_and_edge_once(core, database) -> None:
    assert core.subscriptions.subscribe("chat-1", _ref("a", title="A")) is True
    assert core.subscriptions.subscribe("chat-1", _ref("a", title="A")) is False

    assert _count(database, "chats") == 1
    assert _count(database, "channels") == 1
    assert _count(database, "chat_channels") == 1
    assert core.subscriptions.count_channels_for_group("chat-1") == 1
    assert core.subscriptions.get_channel("yt:a").title == "A"


def test_deny_listed_channel_is_rejected_before_any_write(database, clock) -> None:
    graph = SubscriptionGraph(database, channel_deny_list=("yt:bad",), clock=clock)

    with pytest.raises(PolicyRejectedError, match="yt:bad"):
        graph.subscribe("chat-1", _ref("bad"))

    assert _count(database, "chats") == 0
    assert _count(database, "channels") == 0


def test_purge_denied_channels_removes_existing_rows(database, clock) -> None:
    permissive = SubscriptionGraph(database, clock=clock)
    permissive.subscribe("chat-1", _ref("bad"))
    permissive.subscribe("chat-1", _ref("good"))
    strict = SubscriptionGraph(database, channel_deny_list=("yt:bad", "yt:absent"), clock=clock)

    assert strict.purge_denied_channels() == 1
    assert [channel.channel_id for channel in strict.list_channels_for_group("chat-1")] == [
        "yt:good",
    ]


def test_listings_follow_subscription_order(core, clock) -> None:
    core.subscriptions.subscribe("chat-1", _ref("second"))
    clock.advance(seconds=1)
    core.subscriptions.subscribe("chat-1", _ref("first"))
    core.subscriptions.subscribe("chat-2", _ref("first"))

    channels = core.subscriptions.list_channels_for_group("chat-1")
    groups = core.subscriptions.list_groups_for_channel("yt:first")

    assert [channel.channel_id for channel in channels] == ["yt:second", "yt:first"]
    assert [group.chat_id for group in groups] == ["chat-1", "chat-2"]
    assert core.subscriptions.count_subscribed_groups() == 2
    assert core.subscriptions.count_subscribed_channels() == 2


def test_unsubscribe_then_orphan_sweep_removes_channel_items_and_deliveries(
    core,
    database,
) -> None:
    core.subscriptions.subscribe("chat-1", _ref("a"))
    core.subscriptions.subscribe("chat-1", _ref("kept"))
    _publish(core, "yt:a", "yt:a-1")
    _publish(core, "yt:kept", "yt:kept-1")

    assert core.subscriptions.unsubscribe("chat-1", "yt:a") is True
    assert core.subscriptions.unsubscribe("chat-1", "yt:a") is False
    assert core.subscriptions.get_channel("yt:a").channel_id == "yt:a"
    assert core.ingestion.find_existing_item_ids(["yt:a-1"]) == ["yt:a-1"]

    assert core.subscriptions.delete_orphan_channels() == 1

    with pytest.raises(NotFoundError):
        core.subscriptions.get_channel("yt:a")
    assert core.ingestion.find_missing_item_ids(["yt:a-1", "yt:kept-1"]) == ["yt:a-1"]
    assert core.delivery.list_undelivered_for_group("chat-1", 10) == ["yt:kept-1"]
    assert _count(database, "deliveries") == 1


def test_orphan_group_sweep_keeps_subscribed_and_child_groups(core) -> None:
    core.subscriptions.subscribe("chat-subscribed", _ref("a"))
    core.subscriptions.ensure_group("chat-idle")
    core.subscriptions.link_discussion_channel("chat-subscribed", "chat-discussion")

    assert core.subscriptions.delete_orphan_groups() == 1

    remaining = core.subscriptions.get_groups(["chat-subscribed", "chat-idle", "chat-discussion"])
    assert sorted(group.chat_id for group in remaining) == ["chat-discussion", "chat-subscribed"]
    with pytest.raises(NotFoundError):
        core.subscriptions.get_group("chat-idle")


def test_link_discussion_channel_creates_child_group(core) -> None:
    core.subscriptions.subscribe("chat-1", _ref("a"))

    parent = core.subscriptions.link_discussion_channel("chat-1", "chat-1-talk")

    child = core.subscriptions.get_group("chat-1-talk")
    assert parent.linked_channel_id == "chat-1-talk"
    assert child.parent_chat_id == "chat-1"

    with pytest.raises(IntegrityViolationError):
        core.subscriptions.link_discussion_channel("chat-2", "chat-1-talk")
    with pytest.raises(ValueError, match="itself"):
        core.subscriptions.link_discussion_channel("chat-1", "chat-1")


def test_delete_group_removes_children_edges_and_deliveries(core, database) -> None:
    core.subscriptions.subscribe("chat-1", _ref("a"))
    core.subscriptions.subscribe("chat-2", _ref("a"))
    core.subscriptions.link_discussion_channel("chat-1", "chat-1-talk")
    _publish(core, "yt:a", "yt:a-1")

    assert core.subscriptions.delete_group("chat-1") == 2

    assert _count(database, "chats") == 1
    assert [group.chat_id for group in core.subscriptions.list_groups_for_channel("yt:a")] == [
        "chat-2",
    ]
    assert core.delivery.list_undelivered_for_group("chat-2", 10) == ["yt:a-1"]
    assert _count(database, "deliveries") == 1


def test_change_group_id_moves_every_reference(core) -> None:
    core.subscriptions.subscribe("chat-old", _ref("a"))
    core.subscriptions.set_group_preferences("chat-old", ChatPreferences(is_muted=True))
    core.subscriptions.link_discussion_channel("chat-old", "chat-old-talk")
    _publish(core, "yt:a", "yt:a-1")

    moved = core.subscriptions.change_group_id("chat-old", "chat-new")

    assert moved.chat_id == "chat-new"
    assert moved.is_muted is True
    assert moved.linked_channel_id == "chat-old-talk"
    assert core.subscriptions.get_group("chat-old-talk").parent_chat_id == "chat-new"
    assert [channel.channel_id for channel in core.subscriptions.list_channels_for_group(
        "chat-new",
    )] == ["yt:a"]
    assert core.delivery.list_undelivered_for_group("chat-new", 10) == ["yt:a-1"]
    with pytest.raises(NotFoundError):
        core.subscriptions.get_group("chat-old")


def test_change_group_id_rejects_missing_source_and_taken_target(core) -> None:
    core.subscriptions.ensure_group("chat-1")
    core.subscriptions.ensure_group("chat-2")

    with pytest.raises(NotFoundError):
        core.subscriptions.change_group_id("chat-missing", "chat-3")
    with pytest.raises(IntegrityViolationError):
        core.subscriptions.change_group_id("chat-1", "chat-2")


def test_set_group_preferences_updates_only_given_fields(core) -> None:
    core.subscriptions.ensure_group("chat-1")

    core.subscriptions.set_group_preferences("chat-1", ChatPreferences(is_hide_preview=True))
    view = core.subscriptions.set_group_preferences(
        "chat-1",
        ChatPreferences(is_skip_short_items=True),
    )

    assert view.is_hide_preview is True
    assert view.is_skip_short_items is True
    assert view.is_muted is False
    with pytest.raises(NotFoundError):
        core.subscriptions.set_group_preferences("chat-missing", ChatPreferences(is_muted=True))


def test_top_channels_by_service_ranks_by_subscribers(core, clock) -> None:
    for chat_id in ("chat-1", "chat-2"):
        core.subscriptions.subscribe(chat_id, _ref("popular", title="Popular"))
    core.subscriptions.subscribe("chat-1", _ref("niche"))
    core.subscriptions.subscribe("chat-1", _ref("silent"))
    core.subscriptions.subscribe("chat-1", _ref("elsewhere", service="rss"))
    for channel_id in ("yt:popular", "yt:niche", "rss:elsewhere"):
        core.ingestion.ingest(
            [_delta_published(channel_id, clock.now - timedelta(hours=1))],
            [],
        )

    top = core.subscriptions.top_channels_by_service("yt", since=clock.now - timedelta(days=1))

    assert [(entry.channel_id, entry.chat_count) for entry in top] == [
        ("yt:popular", 2),
        ("yt:niche", 1),
    ]
    assert top[0].title == "Popular"


def test_list_group_ids_pages_in_id_order(core) -> None:
    for chat_id in ("c", "a", "b"):
        core.subscriptions.ensure_group(chat_id)

    assert core.subscriptions.list_group_ids(offset=0, limit=2) == ["a", "b"]
    assert core.subscriptions.list_group_ids(offset=2, limit=2) == ["c"]
    assert core.subscriptions.list_group_ids(offset=0, limit=0) == []


def _delta_published(channel_id: str, published_at: datetime) -> ChannelDelta:
    service, local_id = unwrap_channel_id(channel_id)
    return ChannelDelta(
        channel_id=channel_id,
        service=service,
        url=f"https://{service}.test/{local_id}",
        last_item_published_at=published_at,
    )


def test_delete_channels_cascades_and_get_channels_skips_missing(core, database) -> None:
    core.subscriptions.subscribe("chat-1", _ref("a"))
    core.subscriptions.subscribe("chat-1", _ref("b"))
    _publish(core, "yt:a", "yt:a-1")

    assert core.subscriptions.delete_channels(["yt:a", "yt:a", "yt:missing"]) == 1

    remaining = core.subscriptions.get_channels(["yt:a", "yt:b"])
    assert [channel.channel_id for channel in remaining] == ["yt:b"]
    assert _count(database, "items") == 0
    assert _count(database, "deliveries") == 0
    assert core.subscriptions.count_channels_for_group("chat-1") == 1
