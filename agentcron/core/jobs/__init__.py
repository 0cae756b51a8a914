"""Scheduled-job engine: poller, workflow runner, actions, circuit breaker."""

from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.poller import JobExecutor, JobPoller
from agentcron.core.jobs.service import PollingService
from agentcron.core.jobs.types import ActionResult, JobExecution, PollReport, ScheduledJob
from agentcron.core.jobs.workflow import WorkflowRunner

__all__ = [
    "ActionResult",
    "FailureCircuitBreaker",
    "JobExecution",
    "JobExecutor",
    "JobPoller",
    "PollReport",
    "PollingService",
    "ScheduledJob",
    "WorkflowRunner",
]
