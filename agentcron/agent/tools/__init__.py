"""Toolset for scheduled agent runs."""

from __future__ import annotations

from agentcron.agent.tools.memory import make_memory_tools
from agentcron.agent.tools.schedule import make_schedule_tools
from agentcron.agent.tools.tasks import make_task_tools
from agentcron.storage.store import Store


def make_job_tools(
    store: Store,
    agent_id: str,
    task_id: str | None = None,
    default_timezone: str = "UTC",
) -> list:
    """All tools an ``agent_task`` run gets: memory, tasks, comments, scheduling."""
    return [
        *make_memory_tools(store, agent_id),
        *make_task_tools(store, agent_id, task_id=task_id),
        *make_schedule_tools(store, agent_id, default_timezone=default_timezone, task_id=task_id),
    ]


__all__ = ["make_job_tools", "make_memory_tools", "make_schedule_tools", "make_task_tools"]
