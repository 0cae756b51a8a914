"""BoundedAgentRunner — tool-calling agent loop with hard step and token ceilings."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.utils.function_calling import convert_to_openai_tool
from langgraph.graph import END, START, StateGraph
from loguru import logger

from agentcron.agent.state import RunState
from agentcron.core.config.schema import Config
from agentcron.core.errors import StepBudgetExceeded, TokenBudgetExceeded
from agentcron.core.providers import litellm as llm_provider
from agentcron.core.providers.litellm import setup_provider

if TYPE_CHECKING:
    from agentcron.core.jobs.steps import StepContext


class BoundedAgentRunner:
    """Isolated agent run for scheduled tasks.

    Graph: reason -> execute_tools -> reason ... -> END.  The loop ends when
    the model answers without tool calls.  It aborts (raises) when the model
    asks for more tool invocations than ``max_steps`` or the accumulated
    token usage goes over ``max_tokens``; the answer is never truncated
    silently.

    Parameters
    ----------
    config : Config
        Application config.
    prompt : str
        System prompt for this run.
    tools : list, optional
        LangChain tools the model may call.
    model : str, optional
        Model override. Defaults to config.assistant.model.
    max_steps : int, optional
        Tool invocation ceiling. Defaults to config.agent_limits.max_tool_steps.
    max_tokens : int, optional
        Token ceiling. Defaults to config.agent_limits.max_tokens.
    steps : StepContext, optional
        When given, every tool invocation is a durable step: a resumed run
        gets the stored result of an identical call instead of re-running it.
    """

    def __init__(
        self,
        config: Config,
        prompt: str,
        tools: list | None = None,
        model: str | None = None,
        max_steps: int | None = None,
        max_tokens: int | None = None,
        steps: StepContext | None = None,
    ):
        self.config = config
        self.prompt = prompt
        self.tools = tools or []
        self.model = model or config.assistant.model
        self.max_steps = max_steps if max_steps is not None else config.agent_limits.max_tool_steps
        self.max_tokens = max_tokens if max_tokens is not None else config.agent_limits.max_tokens
        self.steps = steps
        setup_provider(config)
        self._graph = self._compile()

    async def run(self, message: str) -> tuple[str, int]:
        """Run one task and return (response, token_count).

        Raises StepBudgetExceeded / TokenBudgetExceeded when a ceiling is hit.
        """
        state = await self._graph.ainvoke(
            {
                "messages": [HumanMessage(content=message)],
                "system_prompt": self.prompt,
                "tool_steps": 0,
                "token_count": 0,
            },
            # each tool round is two supersteps; the budgets stop the loop first
            config={"recursion_limit": 2 * self.max_steps + 10},
        )
        response = _final_text(state)
        tokens = state.get("token_count", 0)
        logger.debug(
            f"Bounded run done: {len(response)} chars, {tokens} tokens, "
            f"{state.get('tool_steps', 0)} tool steps"
        )
        return response, tokens

    def _compile(self):
        tool_defs = [convert_to_openai_tool(t) for t in self.tools] if self.tools else None
        tool_map = {t.name: t for t in self.tools}
        model = self.model
        config = self.config
        max_steps = self.max_steps
        max_tokens = self.max_tokens
        steps = self.steps

        async def reason(state: RunState) -> dict[str, Any]:
            """Call the LLM with system prompt + history; charge its token usage."""
            messages = [{"role": "system", "content": state["system_prompt"]}]
            for msg in state["messages"]:
                messages.append(_to_litellm(msg))

            ai_message = await llm_provider.achat(
                messages=messages,
                model=model,
                tools=tool_defs,
                temperature=config.assistant.temperature,
                max_tokens=config.assistant.max_tokens,
                api_base=config.get_api_base(model),
            )
            total = state["token_count"] + llm_provider.usage_tokens(ai_message)
            if total > max_tokens:
                logger.warning(f"Token budget exceeded: {total} > {max_tokens}")
                raise TokenBudgetExceeded(total, max_tokens)

            if ai_message.tool_calls:
                logger.debug(f"LLM tool calls: {[tc['name'] for tc in ai_message.tool_calls]}")
            return {"messages": [ai_message], "token_count": total}

        async def execute_tools(state: RunState) -> dict[str, Any]:
            """Run the tool calls of the last AI message, one budget unit each."""
            last_msg = state["messages"][-1]
            count = state["tool_steps"]
            results = []
            for call in last_msg.tool_calls:
                if count >= max_steps:
                    logger.warning(f"Tool step budget exhausted at {count} steps")
                    raise StepBudgetExceeded(max_steps)

                async def invoke(call=call) -> str:
                    return await _invoke_tool(tool_map, call)

                if steps is not None:
                    result = await steps.step(_step_name(count, call), invoke)
                else:
                    result = await invoke()
                count += 1
                results.append(ToolMessage(content=str(result), tool_call_id=call["id"]))
            return {"messages": results, "tool_steps": count}

        graph = StateGraph(RunState)
        graph.add_node("reason", reason)
        graph.add_node("execute_tools", execute_tools)

        graph.add_edge(START, "reason")
        graph.add_conditional_edges("reason", _should_continue, ["execute_tools", END])
        graph.add_edge("execute_tools", "reason")
        return graph.compile()


def _should_continue(state: RunState) -> str:
    """Conditional edge: after reason, go to tools or finish."""
    last_msg = state["messages"][-1]
    if isinstance(last_msg, AIMessage) and last_msg.tool_calls:
        return "execute_tools"
    return END


async def _invoke_tool(tool_map: dict[str, Any], call: dict[str, Any]) -> str:
    tool = tool_map.get(call["name"])
    if tool is None:
        return f"Tool '{call['name']}' not found"
    try:
        return str(await tool.ainvoke(call["args"]))
    except Exception as e:
        # reported back to the model, which may recover
        logger.warning(f"Tool {call['name']} failed: {e}")
        return f"Tool error: {e}"


def _step_name(index: int, call: dict[str, Any]) -> str:
    digest = hashlib.sha256(
        json.dumps(call["args"], sort_keys=True, default=str).encode()
    ).hexdigest()[:12]
    return f"tool:{index}:{call['name']}:{digest}"


def _final_text(state: dict) -> str:
    """Get final assistant text from state."""
    for msg in reversed(state["messages"]):
        if isinstance(msg, AIMessage) and msg.content and not msg.tool_calls:
            return msg.content
    return ""


_ROLES = {HumanMessage: "user", AIMessage: "assistant", ToolMessage: "tool", SystemMessage: "system"}


def _to_litellm(msg: Any) -> dict[str, Any]:
    """LangChain message -> OpenAI-style dict for litellm."""
    out: dict[str, Any] = {"role": _ROLES.get(type(msg), "user"), "content": str(msg.content)}
    if isinstance(msg, ToolMessage):
        out["tool_call_id"] = msg.tool_call_id
    elif isinstance(msg, AIMessage) and msg.tool_calls:
        out["tool_calls"] = [
            {
                "id": tc["id"],
                "type": "function",
                "function": {"name": tc["name"], "arguments": json.dumps(tc["args"])},
            }
            for tc in msg.tool_calls
        ]
    return out
