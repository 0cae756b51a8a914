"""LiteLLM completion calls for agent runs, returned as LangChain AIMessages."""

from __future__ import annotations

import json
import os
from typing import Any

import litellm
from langchain_core.messages import AIMessage
from loguru import logger

from agentcron.core.config.schema import Config
from agentcron.core.errors import ProviderError

litellm.suppress_debug_info = True


def setup_provider(config: Config) -> None:
    """Export configured API keys as ``<PROVIDER>_API_KEY``; existing env wins."""
    for name, provider in config.providers.items():
        if provider.api_key:
            os.environ.setdefault(f"{name.upper()}_API_KEY", provider.api_key)


async def achat(
    messages: list[dict[str, Any]],
    model: str,
    tools: list[dict[str, Any]] | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    api_base: str | None = None,
) -> AIMessage:
    """One chat completion. Raises ProviderError when LiteLLM fails."""
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if tools:
        kwargs.update(tools=tools, tool_choice="auto")
    if api_base:
        kwargs["api_base"] = api_base

    try:
        response = await litellm.acompletion(**kwargs)
    except Exception as e:
        logger.error(f"LLM call to {model} failed: {e}")
        raise ProviderError(f"Error calling LLM: {e}") from e
    return _to_ai_message(response, model)


def usage_tokens(message: AIMessage) -> int:
    """Total tokens charged for ``message`` (0 when the provider sent no usage)."""
    usage = message.response_metadata.get("usage") or {}
    return int(usage.get("total_tokens") or 0)


def _to_ai_message(response: Any, model: str | None = None) -> AIMessage:
    choice = response.choices[0]
    msg = choice.message
    calls = getattr(msg, "tool_calls", None) or []
    usage = getattr(response, "usage", None)

    return AIMessage(
        content=msg.content or "",
        tool_calls=[
            {"id": tc.id, "name": tc.function.name, "args": _parse_args(tc.function.arguments)}
            for tc in calls
        ],
        response_metadata={
            "model": model,
            "finish_reason": choice.finish_reason or "stop",
            "usage": {
                "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
                "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
                "total_tokens": getattr(usage, "total_tokens", 0) or 0,
            },
        },
    )


def _parse_args(arguments: Any) -> dict[str, Any]:
    """Tool-call arguments arrive as a JSON string; unparseable ones are kept under ``raw``."""
    if not isinstance(arguments, str):
        return arguments or {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        return {"raw": arguments}
