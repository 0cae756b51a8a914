"""PollingService — in-process interval trigger for the poller (APScheduler)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from agentcron.core.clock import utc_now
from agentcron.core.errors import StoreError

if TYPE_CHECKING:
    from agentcron.core.jobs.poller import JobPoller


class PollingService:
    """Run ``poller.poll()`` every ``interval_s`` seconds.

    Overlapping ticks are coalesced; the lease still guards each job
    when another process polls the same database.
    """

    def __init__(self, poller: JobPoller, interval_s: int = 300):
        self.poller = poller
        self.interval_s = interval_s
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.interval_s),
            id="agentcron-poll",
            next_run_time=utc_now(),
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(f"PollingService started (every {self.interval_s}s)")

    async def stop(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("PollingService stopped")

    async def tick(self) -> None:
        try:
            report = await self.poller.poll()
        except StoreError as e:
            logger.error(f"Poll cycle aborted, store unavailable: {e}")
            return
        logger.info(
            f"Poll cycle done: {report.success_count}/{report.processed_count} dispatched"
        )
