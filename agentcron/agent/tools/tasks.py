"""Task tools — create, update, inspect tasks and comment on them."""

from __future__ import annotations

from langchain_core.tools import tool

from agentcron.storage.store import Store


def make_task_tools(store: Store, agent_id: str, task_id: str | None = None) -> list:
    """Create task tools closed over store + agent.

    ``task_id`` is the task linked to the running job; ``add_comment``
    falls back to it when no target is given.
    """

    @tool
    def create_task(
        title: str,
        description: str | None = None,
        priority: str = "medium",
        assignee_type: str | None = None,
    ) -> str:
        """Create a new task.

        priority: high, medium or low. assignee_type: user or agent.
        """
        assignee_id = None
        if assignee_type == "agent":
            assignee_id = agent_id
        elif assignee_type == "user":
            agent = store.get_agent(agent_id)
            assignee_id = agent["user_id"] if agent else None

        task, created = store.create_task(
            agent_id, title, description,
            priority=priority, assignee_type=assignee_type, assignee_id=assignee_id,
        )
        if not created:
            return f"Task already exists: {task['title']} (id: {task['id']})"
        return f"Task created: {task['title']} (id: {task['id']})"

    @tool
    def update_task(
        task_id: str,
        status: str | None = None,
        priority: str | None = None,
        title: str | None = None,
        description: str | None = None,
    ) -> str:
        """Update an existing task's status, priority, or details.

        status: todo, in_progress, waiting_on or done.
        """
        task = store.update_task(
            task_id, agent_id,
            status=status, priority=priority, title=title, description=description,
        )
        if task is None:
            return f"Task {task_id} not found."
        return f"Task updated: {task['title']} [{task['status']}, {task['priority']}]"

    @tool
    def get_task(task_id: str) -> str:
        """Get details of a specific task by ID."""
        task = store.get_task(task_id, agent_id)
        if task is None:
            return f"Task {task_id} not found."
        lines = [
            f"{task['title']} (id: {task['id']})",
            f"Status: {task['status']}, priority: {task['priority']}",
        ]
        if task.get("due_date"):
            lines.append(f"Due: {task['due_date']}")
        if task.get("description"):
            lines.append(task["description"])
        return "\n".join(lines)

    @tool
    def list_tasks(status: str = "all", limit: int = 20) -> str:
        """List tasks with optional status filter (todo, in_progress, waiting_on, done, all)."""
        rows = store.list_tasks(agent_id, None if status == "all" else status, limit=limit)
        if not rows:
            return "No tasks."
        return "\n".join(
            f"- [{r['id']}] {r['title']} ({r['status']}, {r['priority']})" for r in rows
        )

    @tool
    def add_comment(
        content: str,
        target_task_id: str | None = None,
        comment_type: str = "progress",
    ) -> str:
        """Add a comment to a task to log progress or notes.

        target_task_id defaults to the task linked to this scheduled job.
        comment_type: progress, note, question or resolution.
        """
        tid = target_task_id or task_id
        if not tid:
            return "No task specified."
        if store.get_task(tid, agent_id) is None:
            return f"Task {tid} not found."
        comment_id = store.add_comment(tid, agent_id, content, comment_type=comment_type)
        return f"Comment added to task {tid} (id: {comment_id})"

    return [create_task, update_task, get_task, list_tasks, add_comment]
