"""Memory tools — agent-scoped notes with substring search."""

from __future__ import annotations

from langchain_core.tools import tool

from agentcron.storage.store import Store


def make_memory_tools(store: Store, agent_id: str) -> list:
    """Create memory tools closed over store + agent."""

    @tool
    def search_memory(query: str, limit: int = 10) -> str:
        """Search your memory for relevant information from past conversations, projects, tasks, and context."""
        rows = store.search_memory(agent_id, query, limit=limit)
        if not rows:
            return "No matching memories."
        return "\n".join(f"- [{r['category']}] {r['title']}: {r['content']}" for r in rows)

    @tool
    def save_memory(title: str, content: str, category: str = "note") -> str:
        """Save important information to memory for future reference.

        category: one of note, fact, preference, context.
        """
        memory_id = store.save_memory(agent_id, title, content, category=category)
        return f"Saved: {title} (id: {memory_id})"

    return [search_memory, save_memory]
