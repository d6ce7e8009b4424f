"""In-process scheduling of the Withings sync and the nightly aggregation.

SyncRunner owns the "sync in flight" guard: a second run while one is going
is skipped instead of queued. SensorScheduler owns the APScheduler instance
and its lifetime; the FastAPI lifespan calls start() and stop().
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.sensors.aggregator import aggregate_all_periods
from app.sensors.models import SyncCounts
from app.sensors.sync import sync_all_withings_data
from app.sensors.withings import WithingsClient

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "withings_sync"
AGGREGATE_JOB_ID = "nightly_aggregation"


def _default_session_factory() -> AsyncSession:
    from app.db import async_session

    return async_session()


class SyncRunner:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        client_factory: Callable[[], WithingsClient] | None = None,
        user_id: str | None = None,
    ):
        self._session_factory = session_factory or _default_session_factory
        self._client_factory = client_factory or WithingsClient
        self.user_id = user_id or settings.default_user_id
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def run(self, full: bool = False, aggregate: bool = False) -> SyncCounts | None:
        """One sync for the configured user; None when another sync is running.

        Errors propagate to the caller.
        """
        if self._lock.locked():
            logger.info("Withings sync already in flight, skipping")
            return None

        async with self._lock:
            async with self._session_factory() as session, self._client_factory() as client:
                counts = await sync_all_withings_data(session, self.user_id, client, full=full)
                if aggregate:
                    await aggregate_all_periods(session, self.user_id)
                return counts


class SensorScheduler:
    def __init__(
        self,
        runner: SyncRunner,
        session_factory: Callable[[], AsyncSession] | None = None,
    ):
        self.runner = runner
        self._session_factory = session_factory or _default_session_factory
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            logger.info("Scheduler already running")
            return

        scheduler = AsyncIOScheduler(timezone=settings.default_tz)
        scheduler.add_job(
            self.run_sync,
            IntervalTrigger(minutes=settings.scheduler_sync_interval_minutes),
            id=SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.run_aggregation,
            CronTrigger(
                hour=settings.scheduler_aggregate_hour,
                minute=settings.scheduler_aggregate_minute,
                timezone=settings.default_tz,
            ),
            id=AGGREGATE_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Scheduler started: sync every %d min, aggregation daily at %02d:%02d %s",
            settings.scheduler_sync_interval_minutes,
            settings.scheduler_aggregate_hour,
            settings.scheduler_aggregate_minute,
            settings.default_tz,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    async def run_sync(self) -> None:
        try:
            counts = await self.runner.run()
        except Exception:
            logger.exception("Scheduled Withings sync failed")
            return
        if counts is not None:
            logger.info("Scheduled sync stored %d events", counts.total)

    async def run_aggregation(self) -> None:
        try:
            async with self._session_factory() as session:
                await aggregate_all_periods(session, self.runner.user_id)
        except Exception:
            logger.exception("Nightly aggregation failed")
