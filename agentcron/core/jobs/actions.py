"""Action handlers — one function per action kind, uniform ActionResult out.

Handlers take ``(job, ctx)`` and return an ``ActionResult``.  Expected
failures (missing URL, non-2xx response, unknown agent) come back as
``success=False``; anything else raises and is converted by the workflow.
Every externally visible side effect runs inside a durable step, so a
re-entered execution does not repeat it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from loguru import logger

from agentcron.core.errors import AgentRunError, ProviderError
from agentcron.core.jobs.types import (
    ActionResult,
    AgentTaskPayload,
    NotifyPayload,
    ScheduledJob,
    WebhookPayload,
)

if TYPE_CHECKING:
    from agentcron.core.config.schema import Config
    from agentcron.core.jobs.steps import StepContext
    from agentcron.storage.store import Store


@dataclass
class ActionContext:
    """Collaborators an action may touch during one execution."""

    store: Store
    config: Config
    steps: StepContext
    http_transport: httpx.AsyncBaseTransport | None = None


# ════════════════════════════════════════════════════════════
# NOTIFY
# ════════════════════════════════════════════════════════════


async def notify(job: ScheduledJob, ctx: ActionContext) -> ActionResult:
    """Post a reminder message into the agent's conversation and notify the owner."""
    store = ctx.store
    payload = NotifyPayload.model_validate(job.action_payload)
    content = _reminder_content(store, job, payload)

    def resolve_conversation() -> str:
        if job.conversation_id and store.get_conversation(job.conversation_id):
            return job.conversation_id
        return store.find_or_create_active_conversation(
            job.agent_id, title=f"Scheduled: {job.title}"
        )

    conversation_id = await ctx.steps.step("notify:conversation", resolve_conversation)
    message_id = await ctx.steps.step(
        "notify:message",
        lambda: store.insert_message(
            conversation_id,
            "assistant",
            content,
            {"type": "scheduled_notification", "job_id": job.id},
        ),
    )
    notification_id = await ctx.steps.step(
        "notify:notification",
        lambda: store.create_notification(
            job.agent_id,
            "reminder",
            job.title,
            content[:200],
            link_type="conversation",
            link_id=conversation_id,
        ),
    )
    return ActionResult(
        success=True,
        data={
            "conversationId": conversation_id,
            "messageId": message_id,
            "notificationId": notification_id,
            "message": content,
        },
    )


def _reminder_content(store: Store, job: ScheduledJob, payload: NotifyPayload) -> str:
    content = f"**Reminder:** {payload.message or job.title}"
    task_id = payload.task_id or job.task_id
    if task_id:
        task = store.get_task(task_id, job.agent_id)
        if task:
            content += f"\n**Task:** {task['title']}"
            if task.get("due_date"):
                content += f"\n**Due:** {task['due_date'][:10]}"
    return content


# ════════════════════════════════════════════════════════════
# AGENT TASK
# ════════════════════════════════════════════════════════════


async def agent_task(job: ScheduledJob, ctx: ActionContext) -> ActionResult:
    """Run the agent on the job's instruction in a fresh conversation."""
    from agentcron.agent.bounded import BoundedAgentRunner
    from agentcron.agent.prompt import build_system_prompt
    from agentcron.agent.tools import make_job_tools

    store = ctx.store
    payload = AgentTaskPayload.model_validate(job.action_payload)
    instruction = payload.instruction or job.description or "Execute scheduled task"

    agent = store.get_agent(job.agent_id)
    if agent is None:
        return ActionResult(success=False, error="Agent not found")
    profile = store.get_user_profile(agent["user_id"])

    conversation_id = await ctx.steps.step(
        "agent:conversation",
        lambda: store.create_conversation(job.agent_id, f"Scheduled: {job.title}"),
    )
    user_message = f"[Scheduled Task: {job.title}]\n\n{instruction}"
    meta = {"type": "scheduled_agent_task", "job_id": job.id}
    await ctx.steps.step(
        "agent:user-message",
        lambda: store.insert_message(conversation_id, "user", user_message, meta),
    )

    runner = BoundedAgentRunner(
        config=ctx.config,
        prompt=build_system_prompt(
            agent,
            profile,
            default_timezone=ctx.config.scheduler.default_timezone,
            base_prompt=ctx.config.assistant.system_prompt,
        ),
        tools=make_job_tools(
            store,
            job.agent_id,
            task_id=payload.task_id or job.task_id,
            default_timezone=ctx.config.scheduler.default_timezone,
        ),
        steps=ctx.steps,
    )

    async def run_agent() -> dict[str, Any]:
        try:
            response, tokens = await runner.run(user_message)
        except (AgentRunError, ProviderError) as e:
            store.insert_message(
                conversation_id,
                "assistant",
                f"I encountered an error while executing this scheduled task: {e}",
                {**meta, "error": True},
            )
            raise AgentRunError(f"Agent failed: {e}") from e
        return {"response": response or "Task completed.", "tokens": tokens}

    run = await ctx.steps.step("agent:run", run_agent)
    response = run["response"]
    logger.info(f"Agent task completed for job {job.id} ({run['tokens']} tokens)")

    await ctx.steps.step(
        "agent:response",
        lambda: store.insert_message(conversation_id, "assistant", response, meta),
    )
    await ctx.steps.step(
        "agent:activity",
        lambda: store.log_activity(
            job.agent_id,
            "cron_execution",
            f"Completed: {job.title}",
            description=response[:200],
            conversation_id=conversation_id,
            job_id=job.id,
            status="completed",
        ),
    )
    await ctx.steps.step(
        "agent:notification",
        lambda: store.create_notification(
            job.agent_id,
            "task_update",
            f"Scheduled task completed: {job.title}",
            response[:200],
            link_type="conversation",
            link_id=conversation_id,
        ),
    )
    return ActionResult(
        success=True,
        data={
            "conversationId": conversation_id,
            "instruction": instruction,
            "response": response[:500],
        },
    )


# ════════════════════════════════════════════════════════════
# WEBHOOK
# ════════════════════════════════════════════════════════════


async def webhook(job: ScheduledJob, ctx: ActionContext) -> ActionResult:
    """POST the job identity merged with ``payload.body`` to ``payload.url``."""
    payload = WebhookPayload.model_validate(job.action_payload)
    if not payload.url:
        return ActionResult(success=False, error="No webhook URL specified")

    async def post() -> dict[str, Any]:
        headers = {"Content-Type": "application/json", **(payload.headers or {})}
        body = {
            "job_id": job.id,
            "job_type": job.job_type,
            "title": job.title,
            **(payload.body or {}),
        }
        async with httpx.AsyncClient(
            transport=ctx.http_transport, timeout=ctx.config.webhook.timeout_s
        ) as client:
            resp = await client.post(payload.url, json=body, headers=headers)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        logger.debug(f"Webhook {payload.url} -> {resp.status_code}")
        return {"status": resp.status_code, "data": data}

    response = await ctx.steps.step("webhook:post", post)
    if not 200 <= response["status"] < 300:
        return ActionResult(success=False, error=f"Webhook returned {response['status']}")
    return ActionResult(success=True, data=response["data"])


# ════════════════════════════════════════════════════════════
# DISPATCH
# ════════════════════════════════════════════════════════════

ActionHandler = Callable[[ScheduledJob, ActionContext], Awaitable[ActionResult]]

ACTIONS: dict[str, ActionHandler] = {
    "notify": notify,
    "agent_task": agent_task,
    "webhook": webhook,
}


async def dispatch_action(job: ScheduledJob, ctx: ActionContext) -> ActionResult:
    """Route a job to its handler. Unknown kinds fail, never no-op."""
    handler = ACTIONS.get(job.action_type)
    if handler is None:
        return ActionResult(success=False, error=f"Unknown action type: {job.action_type}")
    return await handler(job, ctx)
