"""Pydantic API models — request/response shapes of the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ════════════════════════════════════════════════════════════
# DISPATCH
# ════════════════════════════════════════════════════════════


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DispatchResultOut(_Camel):
    job_id: str
    title: str
    success: bool
    error: str | None = None


class DispatchResponse(_Camel):
    """Body returned by the cron trigger endpoint."""

    message: str
    processed_count: int = 0
    success_count: int = 0
    results: list[DispatchResultOut] = Field(default_factory=list)
    timestamp: str


# ════════════════════════════════════════════════════════════
# JOBS
# ════════════════════════════════════════════════════════════


class JobOut(BaseModel):
    id: str
    agent_id: str
    title: str
    job_type: str
    action_type: str
    schedule_type: str
    cron_expression: str | None = None
    next_run_at: str | None = None
    timezone: str
    status: str
    agent_run_state: str
    consecutive_failures: int
    failure_reason: str | None = None
    run_count: int
    max_runs: int | None = None
    last_run_at: str | None = None


class ExecutionOut(BaseModel):
    id: str
    job_id: str
    status: str
    result: Any = None
    error: str | None = None
    steps: list[str] = Field(default_factory=list)
    started_at: str | None = None
    completed_at: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    scheduler_running: bool = False
    in_flight: int = 0
