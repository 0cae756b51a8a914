"""System prompt for scheduled agent runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from agentcron.core.clock import to_iso, utc_now


def build_system_prompt(
    agent: dict[str, Any],
    profile: dict[str, Any] | None = None,
    default_timezone: str = "UTC",
    base_prompt: str | None = None,
    now: datetime | None = None,
) -> str:
    """Assemble the prompt from time context, identity and owner profile.

    Layers:
      1. Current time (owner's timezone + UTC anchor for scheduling)
      2. Identity (agent.system_prompt > base_prompt > name)
      3. Owner (name, timezone, email)
      4. Scheduled-run rules
    """
    profile = profile or {}
    tz = profile.get("timezone") or default_timezone
    now = now or utc_now()
    parts: list[str] = []

    local = now.astimezone(ZoneInfo(tz))
    parts.append(
        "## Current Time\n"
        f"Right now it is: {local.strftime('%A, %B %d, %Y %I:%M:%S %p')} ({tz})\n"
        f"UTC ISO timestamp: {to_iso(now)}\n\n"
        "**IMPORTANT for scheduling:** when creating reminders or scheduled jobs, "
        "use the UTC ISO timestamp above as your base and pass times as UTC ISO "
        "strings ending in Z."
    )

    identity = agent.get("system_prompt") or base_prompt
    if identity:
        parts.append(identity)
    else:
        parts.append(f"You are {agent.get('name') or 'Assistant'}, an AI assistant.")

    owner = profile.get("name")
    if owner:
        lines = ["## Your Owner", f"You work for {owner}."]
        if profile.get("timezone"):
            lines.append(f"Their timezone is {profile['timezone']}.")
        if profile.get("email"):
            lines.append(f"Their email is {profile['email']}.")
        parts.append("\n".join(lines))

    parts.append(
        "## Scheduled Run\n"
        "You were started by a scheduled job, not by a live user. Nobody is "
        "watching this conversation: do the work with your tools, then reply "
        "with a short summary of what you did. Your tool calls are limited."
    )
    return "\n\n".join(parts)
