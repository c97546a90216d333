"""Wiring of every component to one database and one settings object."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime

from channel_sync.config import Settings
from channel_sync.dedup_cache import PushDedupCache
from channel_sync.delivery import DeliveryQueue
from channel_sync.ingestion.pipeline import IngestionPipeline
from channel_sync.maintenance import MaintenanceService
from channel_sync.scheduling.renewal import RenewalScheduler
from channel_sync.scheduling.sync import SyncScheduler
from channel_sync.storage.common import utc_now
from channel_sync.storage.database import Database
from channel_sync.subscriptions import SubscriptionGraph


class ChannelSyncCore:
    """Entry point used by workers, the push listener and the CLI."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.database = database
        self.sync = SyncScheduler(database, settings.sync, clock=clock)
        self.renewal = RenewalScheduler(database, settings.renewal, clock=clock)
        self.subscriptions = SubscriptionGraph(
            database,
            channel_deny_list=settings.channel_deny_list,
            clock=clock,
        )
        self.ingestion = IngestionPipeline(database, settings.ingestion, clock=clock, sleep=sleep)
        self.dedup_cache = PushDedupCache(database, clock=clock)
        self.delivery = DeliveryQueue(database, settings.delivery, clock=clock)
        self.maintenance = MaintenanceService(
            subscriptions=self.subscriptions,
            pipeline=self.ingestion,
            dedup_cache=self.dedup_cache,
            settings=settings.retention,
            clock=clock,
        )

    @classmethod
    def open(cls, settings: Settings, **kwargs) -> ChannelSyncCore:  # noqa: ANN003
        """Validate settings, open the database and migrate it to head."""

        settings.validate()
        database = Database(
            settings.storage.db_path,
            busy_timeout_ms=settings.storage.busy_timeout_ms,
        )
        database.init_schema()
        return cls(settings, database, **kwargs)

    def close(self) -> None:
        self.database.close()

    def __enter__(self) -> ChannelSyncCore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
