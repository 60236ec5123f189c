from __future__ import annotations

"""
Channel config refresher
------------------------
Re-reads the channel configuration from the bucket on a fixed interval and
swaps it into the `ChannelRegistry`.

- Success installs the new snapshot.
- Failure is logged and the previous snapshot stays in service. There is no
  backoff and no give-up: a bucket that stays broken means serving the last
  known-good configuration indefinitely.
- The first run happens one interval after `start()`; startup has already
  loaded the registry synchronously.
"""

import logging
from datetime import timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tarball_serve.core.exceptions import ConfigError
from tarball_serve.services.channel_loader import load_channels_snapshot
from tarball_serve.services.channel_registry import ChannelRegistry
from tarball_serve.utils.aws import BlobStore

logger = logging.getLogger(__name__)

JOB_ID = "channel_config_refresh"


class ConfigRefresher:
    def __init__(self, store: BlobStore, registry: ChannelRegistry, *, interval_seconds: int) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.store = store
        self.registry = registry
        self.interval_seconds = int(interval_seconds)
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def refresh_once(self) -> bool:
        """One tick: load and install. Returns False (and keeps the old snapshot) on failure."""
        try:
            snapshot = await load_channels_snapshot(self.store)
        except ConfigError as e:
            logger.error("Failed to refresh channel configuration: %s", e)
            return False
        except Exception:
            logger.exception("Unexpected error while refreshing channel configuration")
            return False

        self.registry.replace(snapshot)
        logger.info("Refreshed channel configuration (%d channels)", len(snapshot))
        return True

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Schedule the refresh job on the running event loop. Call once."""
        if self._scheduler is not None:
            raise RuntimeError("config refresher already started")

        sched = AsyncIOScheduler(timezone=timezone.utc)
        sched.add_job(
            self.refresh_once,
            IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        sched.start()
        self._scheduler = sched
        logger.info("Config refresher started | interval=%ss", self.interval_seconds)

    def shutdown(self) -> None:
        """Stop scheduling further ticks. A tick already in flight is not awaited."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Config refresher stopped")


__all__ = ["ConfigRefresher", "JOB_ID"]
