"""Scheduling tools — let the agent queue follow-up jobs for itself."""

from __future__ import annotations

from langchain_core.tools import tool

from agentcron.core.errors import JobNotFoundError, JobStateError, ScheduleError
from agentcron.core.jobs.breaker import FailureCircuitBreaker
from agentcron.core.jobs.schedule import schedule_job
from agentcron.storage.store import Store


def make_schedule_tools(
    store: Store,
    agent_id: str,
    default_timezone: str = "UTC",
    task_id: str | None = None,
) -> list:
    """Create scheduling tools closed over store + agent."""

    @tool
    def schedule_reminder(
        title: str,
        message: str,
        run_at: str | None = None,
        cron_expression: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Schedule a reminder for later.

        run_at: UTC ISO datetime for one-time reminders, e.g. '2026-01-31T20:00:00Z'.
        cron_expression: 5-field cron for recurring reminders, e.g. '0 9 * * 1'.
        Give exactly one of them.
        """
        try:
            job = schedule_job(
                store, agent_id, title, "notify", {"message": message},
                run_at=run_at, cron_expression=cron_expression,
                timezone=timezone or default_timezone,
                description=message, task_id=task_id,
            )
        except ScheduleError as e:
            return f"Failed to schedule reminder: {e}"
        return f"Reminder scheduled: '{title}' (id: {job.id}, next run: {job.next_run_at})"

    @tool
    def schedule_agent_task(
        title: str,
        instruction: str,
        run_at: str | None = None,
        cron_expression: str | None = None,
        timezone: str | None = None,
    ) -> str:
        """Schedule yourself to perform a task later with full tool access.

        instruction: what you should do when the task runs.
        run_at: UTC ISO datetime for one-time tasks.
        cron_expression: 5-field cron for recurring tasks.
        Give exactly one of them.
        """
        try:
            job = schedule_job(
                store, agent_id, title, "agent_task", {"instruction": instruction},
                run_at=run_at, cron_expression=cron_expression,
                timezone=timezone or default_timezone,
                description=instruction, task_id=task_id,
            )
        except ScheduleError as e:
            return f"Failed to schedule task: {e}"
        return f"Agent task scheduled: '{title}' (id: {job.id}, next run: {job.next_run_at})"

    @tool
    def reactivate_scheduled_job(job_id: str) -> str:
        """Reactivate a scheduled job that was paused after repeated failures."""
        try:
            job = FailureCircuitBreaker(store).reactivate(job_id, agent_id=agent_id)
        except (JobNotFoundError, JobStateError) as e:
            return f"Failed to reactivate: {e}"
        return f"Job reactivated: {job.title} (next run: {job.next_run_at})"

    return [schedule_reminder, schedule_agent_task, reactivate_scheduled_job]
