"""Startup purge and periodic best-effort cleanup sweeps."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from channel_sync.config import RetentionSettings
from channel_sync.dedup_cache import PushDedupCache
from channel_sync.errors import ChannelSyncError
from channel_sync.ingestion.pipeline import IngestionPipeline
from channel_sync.models import SweepReport, SweepStep
from channel_sync.storage.common import utc_now
from channel_sync.subscriptions import SubscriptionGraph

logger = logging.getLogger(__name__)

ORPHAN_CHANNELS = "orphan_channels"
ORPHAN_GROUPS = "orphan_groups"
ITEM_RETENTION = "item_retention"
PUSH_EVICTION = "push_eviction"


class MaintenanceService:
    """Runs cleanup steps independently; one failing step never stops the rest."""

    def __init__(
        self,
        *,
        subscriptions: SubscriptionGraph,
        pipeline: IngestionPipeline,
        dedup_cache: PushDedupCache,
        settings: RetentionSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.subscriptions = subscriptions
        self.pipeline = pipeline
        self.dedup_cache = dedup_cache
        self.settings = settings
        self.clock = clock

    def on_startup(self) -> int:
        return self.subscriptions.purge_denied_channels()

    def run_sweeps(self) -> SweepReport:
        now = self.clock()
        item_cutoff = now - timedelta(days=self.settings.item_retention_days)
        push_age = timedelta(days=self.settings.push_retention_days)

        steps: list[tuple[str, Callable[[], int]]] = [
            (ORPHAN_CHANNELS, self.subscriptions.delete_orphan_channels),
            (ORPHAN_GROUPS, self.subscriptions.delete_orphan_groups),
            (ITEM_RETENTION, lambda: self.pipeline.delete_items_published_before(item_cutoff)),
            (PUSH_EVICTION, lambda: self.dedup_cache.evict_older_than(push_age)),
        ]
        report = SweepReport()
        for name, step in steps:
            report.steps.append(_run_step(name, step))
        return report


def _run_step(name: str, step: Callable[[], int]) -> SweepStep:
    try:
        deleted = step()
    except (SQLAlchemyError, ChannelSyncError) as error:
        logger.exception("Cleanup step %s failed.", name)
        return SweepStep(name=name, error=str(error))
    if deleted:
        logger.info("Cleanup step %s deleted %s row(s).", name, deleted)
    return SweepStep(name=name, deleted=deleted)
