"""Scheduled job types — mirror the scheduled_jobs / job_executions tables."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

JobType = Literal["reminder", "follow_up", "recurring", "one_time"]
ScheduleType = Literal["once", "cron"]
JobStatus = Literal["active", "paused", "completed", "cancelled"]
AgentRunState = Literal["idle", "running", "failed"]
ExecutionStatus = Literal["running", "success", "failed"]


class ScheduledJob(BaseModel):
    """A unit of deferred or recurring work.

    ``action_type`` is a plain string; unknown kinds are rejected at
    dispatch time, not at load time.
    """

    id: str
    agent_id: str
    title: str
    description: str | None = None
    job_type: JobType = "one_time"
    action_type: str = "notify"
    action_payload: dict[str, Any] = Field(default_factory=dict)

    schedule_type: ScheduleType = "once"
    run_at: str | None = None
    cron_expression: str | None = None
    next_run_at: str | None = None
    timezone: str = "UTC"

    status: JobStatus = "active"
    agent_run_state: AgentRunState = "idle"
    locked_until: str | None = None
    last_lock_at: str | None = None

    consecutive_failures: int = 0
    failure_reason: str | None = None

    task_id: str | None = None
    project_id: str | None = None
    conversation_id: str | None = None
    priority: str | None = None

    run_count: int = 0
    max_runs: int | None = None
    last_run_at: str | None = None
    last_execution_id: str | None = None
    last_failed_execution_id: str | None = None

    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == "cron"


class JobExecution(BaseModel):
    """One attempt to run a job; also the checkpoint anchor for its steps."""

    id: str
    job_id: str
    agent_id: str
    status: ExecutionStatus = "running"
    result: Any = None
    error: str | None = None
    checkpoint: dict[str, Any] = Field(default_factory=dict)
    interruptions: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    closed_at: str | None = None


class ActionResult(BaseModel):
    """Uniform outcome of every action kind."""

    success: bool
    data: Any = None
    error: str | None = None


# ════════════════════════════════════════════════════════════
# ACTION PAYLOADS (tagged by ScheduledJob.action_type)
# ════════════════════════════════════════════════════════════


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class NotifyPayload(_Payload):
    message: str | None = None
    task_id: str | None = Field(default=None, alias="taskId")


class AgentTaskPayload(_Payload):
    instruction: str | None = None
    task_id: str | None = Field(default=None, alias="taskId")


class WebhookPayload(_Payload):
    url: str | None = None
    body: dict[str, Any] | None = None
    headers: dict[str, str] | None = None


# ════════════════════════════════════════════════════════════
# POLL CYCLE REPORT
# ════════════════════════════════════════════════════════════


class DispatchResult(BaseModel):
    job_id: str
    title: str
    success: bool
    error: str | None = None


class PollReport(BaseModel):
    processed_count: int = 0
    success_count: int = 0
    results: list[DispatchResult] = Field(default_factory=list)
