"""JobPoller + JobExecutor — select due jobs and run them in the background."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from agentcron.core.clock import utc_now
from agentcron.core.errors import DispatchError
from agentcron.core.jobs.types import ActionResult, DispatchResult, PollReport, ScheduledJob

if TYPE_CHECKING:
    from agentcron.core.jobs.workflow import WorkflowRunner
    from agentcron.storage.store import Store


class JobExecutor:
    """Fire-and-forget runner tasks, tracked until they finish."""

    def __init__(self, runner: WorkflowRunner):
        self.runner = runner
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def spawn(self, job: ScheduledJob, now: datetime | None = None) -> asyncio.Task:
        """Start ``runner.run(job)`` as a background task. Raises DispatchError."""
        if self._closed:
            raise DispatchError("Executor is shut down")
        try:
            task = asyncio.create_task(self.runner.run(job, now))
        except RuntimeError as e:
            raise DispatchError(f"Cannot start job task: {e}") from e
        self._tasks.add(task)
        task.add_done_callback(self._done)
        logger.info(f"Job dispatched: {job.id} — {job.title[:80]}")
        return task

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Job task cancelled")
        elif task.exception() is not None:
            logger.opt(exception=task.exception()).error("Job task crashed")

    async def drain(self) -> list[ActionResult]:
        """Wait for every in-flight job task."""
        if not self._tasks:
            return []
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        return [r for r in results if isinstance(r, ActionResult)]

    async def shutdown(self) -> None:
        self._closed = True
        await self.drain()
        logger.info("JobExecutor stopped")


class JobPoller:
    """One poll cycle: recover stale runs, select due jobs, dispatch each.

    Leasing is left to the runner; the poller only selects.  Store errors
    abort the cycle and propagate to the caller.  A job that cannot be
    dispatched is marked ``agent_run_state=failed`` and the cycle goes on.
    """

    def __init__(self, store: Store, executor: JobExecutor, batch_size: int = 5):
        self.store = store
        self.executor = executor
        self.batch_size = batch_size

    async def poll(self, now: datetime | None = None) -> PollReport:
        now = now or utc_now()
        self.store.recover_stale_runs(now)
        jobs = self.store.list_due_jobs(self.batch_size, now)
        logger.info(f"Poll cycle: {len(jobs)} due job(s)")

        report = PollReport(processed_count=len(jobs))
        for job in jobs:
            self.store.log_activity(
                job.agent_id,
                "cron_execution",
                f"Starting workflow: {job.title}",
                description=f"Executing {job.job_type} ({job.action_type})",
                metadata={"jobType": job.job_type, "actionType": job.action_type},
                job_id=job.id,
                task_id=job.task_id,
                status="started",
            )
            try:
                self.executor.spawn(job, now)
            except DispatchError as e:
                logger.error(f"Dispatch failed for job {job.id}: {e}")
                self.store.mark_dispatch_failed(job.id, str(e))
                report.results.append(
                    DispatchResult(job_id=job.id, title=job.title, success=False, error=str(e))
                )
                continue
            report.success_count += 1
            report.results.append(DispatchResult(job_id=job.id, title=job.title, success=True))
        return report
