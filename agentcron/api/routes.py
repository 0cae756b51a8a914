"""API routes — cron trigger, job admin, health."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from agentcron import __version__
from agentcron.api.deps import (
    get_breaker,
    get_executor,
    get_poller,
    get_store,
    verify_cron_secret,
)
from agentcron.core.clock import to_iso, utc_now
from agentcron.core.errors import JobNotFoundError, JobStateError, StoreError
from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.poller import JobExecutor, JobPoller
from agentcron.storage.models import (
    DispatchResponse,
    DispatchResultOut,
    ExecutionOut,
    HealthResponse,
    JobOut,
)
from agentcron.storage.store import Store

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, executor: JobExecutor = Depends(get_executor)):
    """Health check."""
    service = getattr(request.app.state, "service", None)
    return HealthResponse(
        version=__version__,
        scheduler_running=bool(service and service.running),
        in_flight=executor.in_flight,
    )


# ════════════════════════════════════════════════════════════
# CRON TRIGGER
# ════════════════════════════════════════════════════════════


@router.api_route(
    "/cron/dispatch",
    methods=["GET", "POST"],
    response_model=DispatchResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def dispatch(poller: JobPoller = Depends(get_poller)):
    """Run one poll cycle. GET is accepted for manual testing."""
    try:
        report = await poller.poll()
    except StoreError as e:
        logger.error(f"Dispatch cycle failed: {e}")
        raise HTTPException(status_code=500, detail="Dispatch cycle failed")

    logger.info(
        f"Dispatch completed: {report.success_count}/{report.processed_count} workflows started"
    )
    return DispatchResponse(
        message="Dispatch cycle completed" if report.processed_count else "No jobs due",
        processed_count=report.processed_count,
        success_count=report.success_count,
        results=[DispatchResultOut(**r.model_dump()) for r in report.results],
        timestamp=to_iso(utc_now()),
    )


# ════════════════════════════════════════════════════════════
# JOBS
# ════════════════════════════════════════════════════════════


@router.get(
    "/jobs", response_model=list[JobOut], dependencies=[Depends(verify_cron_secret)]
)
async def list_jobs(
    agent_id: str | None = Query(None),
    status: str | None = Query(None),
    store: Store = Depends(get_store),
):
    """List jobs; paused ones carry their failure_reason."""
    return [JobOut(**j.model_dump()) for j in store.list_jobs(agent_id=agent_id, status=status)]


@router.get(
    "/jobs/{job_id}/executions",
    response_model=list[ExecutionOut],
    dependencies=[Depends(verify_cron_secret)],
)
async def list_executions(
    job_id: str,
    limit: int = Query(20, ge=1, le=200),
    store: Store = Depends(get_store),
):
    if store.get_job(job_id) is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return [
        ExecutionOut(**e.model_dump(exclude={"checkpoint"}), steps=list(e.checkpoint))
        for e in store.list_executions(job_id, limit=limit)
    ]


@router.post(
    "/jobs/{job_id}/reactivate",
    response_model=JobOut,
    dependencies=[Depends(verify_cron_secret)],
)
async def reactivate_job(
    job_id: str, breaker: FailureCircuitBreaker = Depends(get_breaker)
):
    """paused -> active, failure counter reset."""
    try:
        job = breaker.reactivate(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return JobOut(**job.model_dump())


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=JobOut,
    dependencies=[Depends(verify_cron_secret)],
)
async def cancel_job(job_id: str, store: Store = Depends(get_store)):
    """Cancel a job; an execution already in flight is allowed to finish."""
    job = store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    if not store.cancel_job(job_id):
        raise HTTPException(status_code=409, detail=f"Job {job_id} is {job.status}")
    logger.info(f"Job cancelled: {job_id}")
    return JobOut(**store.get_job(job_id).model_dump())
