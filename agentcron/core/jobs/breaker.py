"""FailureCircuitBreaker — pause jobs that keep failing, and the way back."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from agentcron.core.clock import utc_now
from agentcron.core.errors import JobNotFoundError, JobStateError
from agentcron.core.jobs.schedule import advance
from agentcron.core.jobs.types import ScheduledJob

if TYPE_CHECKING:
    from agentcron.storage.store import Store


class FailureCircuitBreaker:
    """Per-job consecutive-failure counter with an ``active -> paused`` trip.

    Parameters
    ----------
    store : Store
        Job store.
    threshold : int
        Consecutive failures that pause the job.
    """

    def __init__(self, store: Store, threshold: int = 3):
        self.store = store
        self.threshold = threshold

    def record_failure(
        self,
        job: ScheduledJob,
        execution_id: str,
        error: str,
        now: datetime | None = None,
    ) -> bool:
        """Count one failed execution. Returns True if the job is now paused.

        Cron jobs move on to their next slot; once jobs stay due and are
        picked up again by the next poll cycle. Counting is idempotent per
        execution id.
        """
        now = now or utc_now()
        failures = self.store.record_job_failure(
            job.id, execution_id, error, next_run_at=advance(job, now), now=now
        )
        logger.error(f"Job {job.id} failed ({failures}/{self.threshold}): {error}")

        if failures < self.threshold:
            return False

        reason = f"Paused after {failures} consecutive failures: {error}"
        if self.store.pause_job(job.id, reason):
            logger.warning(f"Circuit breaker tripped, job paused: {job.id} ({job.title})")
        return True

    def reactivate(self, job_id: str, agent_id: str | None = None,
                   now: datetime | None = None) -> ScheduledJob:
        """paused -> active with the failure counter reset.

        A cron job is moved to its next occurrence after ``now`` so missed
        slots are not replayed.
        """
        job = self.store.get_job(job_id)
        if job is None or (agent_id and job.agent_id != agent_id):
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.status != "paused":
            raise JobStateError(f"Job {job_id} is {job.status}, not paused")

        next_run_at = None
        if job.is_recurring:
            next_run_at = advance(job.model_copy(update={"next_run_at": None}), now or utc_now())
        if not self.store.reactivate_job(job_id, next_run_at=next_run_at):
            raise JobStateError(f"Job {job_id} is no longer paused")
        logger.info(f"Job reactivated: {job_id} (next run {next_run_at or job.next_run_at})")
        return self.store.get_job(job_id)
