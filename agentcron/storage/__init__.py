"""SQLite persistence and API models."""

from agentcron.storage.store import Store

__all__ = ["Store"]
