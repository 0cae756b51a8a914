"""WorkflowRunner — one job execution as a sequence of durable steps."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import httpx
from loguru import logger

from agentcron.core.clock import utc_now
from agentcron.core.errors import AgentCronError, StoreDataError, StoreError
from agentcron.core.jobs.actions import ActionContext, dispatch_action
from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.schedule import advance
from agentcron.core.jobs.steps import StepContext
from agentcron.core.jobs.types import ActionResult, ScheduledJob

if TYPE_CHECKING:
    from agentcron.core.config.schema import Config
    from agentcron.storage.store import Store


class WorkflowRunner:
    """Runs a claimed job: lease, execution record, dispatch, outcome.

    Steps (checkpointed on the JobExecution row):
      1. dispatch        — action handler; exceptions other than an
                           infrastructure StoreError become failed results
      2. record-result   — execution running -> success|failed
      3. mark-executed   — reschedule / complete the job   (on success)
         mark-failed     — circuit breaker                 (on failure)
    The execution is closed last.  A run that dies before closing leaves
    its execution open; the next run of the job resumes it and replays
    the finished steps from the checkpoint.  Interruptions are counted on
    the execution; once the count reaches the breaker threshold the open
    execution is failed instead of resumed again.
    """

    def __init__(
        self,
        store: Store,
        config: Config,
        breaker: FailureCircuitBreaker | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.store = store
        self.config = config
        self.breaker = breaker or FailureCircuitBreaker(
            store, threshold=config.scheduler.failure_threshold
        )
        self.http_transport = http_transport

    async def run(self, job: ScheduledJob, now: datetime | None = None) -> ActionResult:
        now = now or utc_now()
        if not self.store.claim_lease(job.id, self.config.scheduler.lease_seconds, now):
            logger.warning(f"Job {job.id} not claimed: lease held elsewhere")
            return ActionResult(success=False, error="lease held elsewhere")

        execution = None
        try:
            job = self.store.get_job(job.id) or job
            execution = self.store.find_open_execution(job.id)
            resumed = execution is not None
            if execution is None:
                execution = self.store.create_execution(job.id, job.agent_id, now)
                logger.info(f"Job {job.id} started: {job.title} (execution {execution.id})")
            steps = StepContext(self.store, execution.id, execution.checkpoint)
            if execution.interruptions >= self.breaker.threshold:
                result = self._give_up(job, execution.id, execution.interruptions, execution.error)
            else:
                if resumed:
                    logger.info(
                        f"Job {job.id} resuming execution {execution.id} "
                        f"after steps {steps.completed}"
                    )
                result = await self._execute(job, execution.id, steps)
            self.store.close_execution(execution.id)
        except AgentCronError as e:
            logger.exception(f"Job {job.id} interrupted, execution left open for resume")
            if execution is not None:
                self._record_interruption(execution.id, e)
            self._release(job.id)
            return ActionResult(success=False, error=f"Infrastructure error: {e}")

        logger.info(f"Job {job.id} finished: {'success' if result.success else 'failed'}")
        return result

    async def _execute(
        self, job: ScheduledJob, execution_id: str, steps: StepContext
    ) -> ActionResult:
        ctx = ActionContext(
            store=self.store,
            config=self.config,
            steps=steps,
            http_transport=self.http_transport,
        )

        async def dispatch() -> ActionResult:
            try:
                return await dispatch_action(job, ctx)
            except StoreDataError as e:
                logger.error(f"Store rejected data from {job.action_type} for job {job.id}: {e}")
                return ActionResult(success=False, error=f"Store rejected data: {e}")
            except StoreError:
                raise
            except Exception as e:
                logger.exception(f"Action {job.action_type} raised for job {job.id}")
                return ActionResult(success=False, error=str(e) or type(e).__name__)

        result = ActionResult.model_validate(await steps.step("dispatch", dispatch))

        await steps.step(
            "record-result",
            lambda: self.store.finish_execution(
                execution_id,
                "success" if result.success else "failed",
                result=result.data,
                error=result.error,
            ),
        )

        if result.success:
            await steps.step("mark-executed", lambda: self._mark_executed(job, execution_id))
        else:
            await steps.step(
                "mark-failed",
                lambda: self.breaker.record_failure(
                    job, execution_id, result.error or "Unknown error"
                ),
            )
        return result

    def _mark_executed(self, job: ScheduledJob, execution_id: str) -> bool:
        now = utc_now()
        applied = self.store.mark_job_executed(
            job.id,
            execution_id,
            next_run_at=advance(job, now),
            complete=not job.is_recurring,
            now=now,
        )
        if not applied:
            logger.debug(f"Job {job.id} already marked for execution {execution_id}")
        return applied

    def _give_up(
        self, job: ScheduledJob, execution_id: str, interruptions: int, last_error: str | None
    ) -> ActionResult:
        error = f"Gave up after {interruptions} interrupted attempts: {last_error or 'unknown error'}"
        logger.error(f"Job {job.id}: {error}")
        self.store.finish_execution(execution_id, "failed", error=error)
        self.breaker.record_failure(job, execution_id, error)
        return ActionResult(success=False, error=error)

    def _record_interruption(self, execution_id: str, error: Exception) -> None:
        try:
            count = self.store.record_interruption(execution_id, str(error))
        except AgentCronError as e:
            logger.error(f"Could not record interruption of execution {execution_id}: {e}")
            return
        logger.warning(f"Execution {execution_id} interrupted {count} time(s)")

    def _release(self, job_id: str) -> None:
        try:
            self.store.release_lease(job_id)
        except AgentCronError as e:
            logger.error(f"Could not release lease of job {job_id}: {e}")
