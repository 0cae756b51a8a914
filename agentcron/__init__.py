"""agentcron — scheduled-job execution engine for agent workspaces."""

__version__ = "0.1.0"
