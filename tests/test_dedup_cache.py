from __future__ import annotations

from datetime import timedelta

import allure

pytestmark = [
    allure.epic("Channel Sync"),
    allure.feature("Push Dedup Cache"),
]


def test_record_and_lookup(core) -> None:
    cache = core.dedup_cache

    assert cache.already_pushed([]) == set()
    assert cache.record_push(["yt:v1", "yt:v2", "yt:v1"], channel_id="yt:a") == 2
    assert cache.already_pushed(["yt:v1", "yt:v3"]) == {"yt:v1"}


def test_repeat_push_refreshes_record_and_survives_eviction(core, clock) -> None:
    cache = core.dedup_cache
    cache.record_push(["yt:old", "yt:refreshed"])

    clock.advance(days=20)
    cache.record_push(["yt:refreshed"])
    clock.advance(days=15)

    assert cache.evict_older_than(timedelta(days=30)) == 1
    assert cache.already_pushed(["yt:old", "yt:refreshed"]) == {"yt:refreshed"}


def test_repeat_push_keeps_known_channel_and_publication(core, database, clock) -> None:
    cache = core.dedup_cache
    published_at = clock.now - timedelta(minutes=1)
    cache.record_push(["yt:v1"], channel_id="yt:a", published_at=published_at)

    cache.record_push(["yt:v1"])

    row = database._connection.execute(
        "SELECT channel_id, published_at FROM push_records WHERE item_id = 'yt:v1'",
    ).fetchone()
    assert row["channel_id"] == "yt:a"
    assert row["published_at"] is not None
