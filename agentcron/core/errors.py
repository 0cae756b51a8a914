"""Exception hierarchy for the job engine."""

from __future__ import annotations


class AgentCronError(Exception):
    """Base class for all agentcron errors."""


class StoreError(AgentCronError):
    """Persistence layer failed (infrastructure, not business)."""


class StoreDataError(StoreError):
    """The database refused the data: constraint violation, bad value.

    The store itself is reachable, so retrying the same write fails the
    same way; inside an action this is a business failure.
    """


class ScheduleError(AgentCronError):
    """Schedule descriptor is missing or invalid."""


class ProviderError(AgentCronError):
    """LLM provider call failed."""


class AgentRunError(AgentCronError):
    """Bounded agent run aborted."""


class StepBudgetExceeded(AgentRunError):
    """The agent wanted more tool invocations than allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Tool step budget exceeded ({limit} steps)")


class TokenBudgetExceeded(AgentRunError):
    """The agent consumed more tokens than allowed."""

    def __init__(self, used: int, limit: int):
        self.used = used
        self.limit = limit
        super().__init__(f"Token budget exceeded ({used} > {limit} tokens)")


class JobNotFoundError(AgentCronError):
    """No job with the given id (or not owned by the caller)."""


class JobStateError(AgentCronError):
    """Requested transition is not allowed from the job's current status."""


class DispatchError(AgentCronError):
    """A due job could not be handed to a runner."""
