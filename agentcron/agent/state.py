"""RunState — LangGraph state for a bounded agent run."""

from __future__ import annotations

from langgraph.graph import MessagesState


class RunState(MessagesState):
    """
    Extends MessagesState (messages: Annotated[list[BaseMessage], add_messages]).

    ``tool_steps`` and ``token_count`` are the two budgets the runner enforces.
    """

    system_prompt: str = ""
    tool_steps: int = 0
    token_count: int = 0
