from __future__ import annotations

import logging
from datetime import timedelta

import allure
import pytest
from sqlalchemy.exc import OperationalError

from channel_sync.config import RetentionSettings
from channel_sync.maintenance import (
    ITEM_RETENTION,
    ORPHAN_CHANNELS,
    ORPHAN_GROUPS,
    PUSH_EVICTION,
    MaintenanceService,
)
from channel_sync.models import ChannelRef, NewItem
from channel_sync.subscriptions import SubscriptionGraph

pytestmark = [
    allure.epic("Channel Sync"),
    allure.feature("Maintenance"),
]


def _ref(local_id: str) -> ChannelRef:
    return ChannelRef(service="yt", local_id=local_id, url=f"https://yt.test/{local_id}")


def test_sweep_runs_every_cleanup_step(core, clock) -> None:
    core.subscriptions.subscribe("chat-1", _ref("kept"))
    core.subscriptions.subscribe("chat-2", _ref("dropped"))
    core.subscriptions.unsubscribe("chat-2", "yt:dropped")
    core.ingestion.ingest(
        [],
        [
            NewItem(
                item_id="yt:stale",
                channel_id="yt:kept",
                url="https://yt.test/stale",
                title="Stale",
                published_at=clock.now - timedelta(days=30),
            ),
        ],
    )
    core.dedup_cache.record_push(["yt:pushed"])
    clock.advance(days=31)

    report = core.maintenance.run_sweeps()

    assert [step.name for step in report.steps] == [
        ORPHAN_CHANNELS,
        ORPHAN_GROUPS,
        ITEM_RETENTION,
        PUSH_EVICTION,
    ]
    assert report.failed_steps == []
    assert report.deleted(ORPHAN_CHANNELS) == 1
    assert report.deleted(ORPHAN_GROUPS) == 1
    assert report.deleted(ITEM_RETENTION) == 1
    assert report.deleted(PUSH_EVICTION) == 1
    assert core.delivery.list_undelivered_for_group("chat-1", 10) == []


def test_failing_step_is_logged_and_other_steps_still_run(
    core,
    clock,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    core.dedup_cache.record_push(["yt:pushed"])
    clock.advance(days=31)

    def broken() -> int:
        raise OperationalError("DELETE FROM channels", {}, Exception("disk I/O error"))

    monkeypatch.setattr(core.subscriptions, "delete_orphan_channels", broken)
    maintenance = MaintenanceService(
        subscriptions=core.subscriptions,
        pipeline=core.ingestion,
        dedup_cache=core.dedup_cache,
        settings=RetentionSettings(),
        clock=clock,
    )

    with caplog.at_level(logging.ERROR, logger="channel_sync.maintenance"):
        report = maintenance.run_sweeps()

    assert [step.name for step in report.failed_steps] == [ORPHAN_CHANNELS]
    assert "disk I/O error" in (report.failed_steps[0].error or "")
    assert report.deleted(PUSH_EVICTION) == 1
    assert "Cleanup step orphan_channels failed" in caplog.text


def test_on_startup_purges_deny_listed_channels(core, database, clock) -> None:
    core.subscriptions.subscribe("chat-1", _ref("bad"))
    strict = SubscriptionGraph(database, channel_deny_list=("yt:bad",), clock=clock)
    maintenance = MaintenanceService(
        subscriptions=strict,
        pipeline=core.ingestion,
        dedup_cache=core.dedup_cache,
        settings=RetentionSettings(),
        clock=clock,
    )

    assert maintenance.on_startup() == 1
    assert core.subscriptions.list_channels_for_group("chat-1") == []
