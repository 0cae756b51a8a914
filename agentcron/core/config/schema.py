"""agentcron configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Credentials for one LiteLLM provider, keyed by its model prefix (``openai``, ``anthropic``, ...)."""

    api_key: str = ""
    api_base: str | None = None


OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"


class AssistantConfig(BaseModel):
    """Model used by agent_task jobs (assistant.*)."""

    name: str = "Assistant"
    model: str = "openai/gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 4096
    system_prompt: str | None = None


class SchedulerConfig(BaseModel):
    """Poller, lease and circuit-breaker settings."""

    enabled: bool = False  # in-process interval loop; off when an external cron calls /cron/dispatch
    poll_interval_s: int = 300
    batch_size: int = 5
    lease_seconds: int = 1800
    failure_threshold: int = 3
    default_timezone: str = "UTC"


class AgentLimitsConfig(BaseModel):
    """Hard ceilings for agent_task runs."""

    max_tool_steps: int = 25
    max_tokens: int = 100_000


class WebhookConfig(BaseModel):
    timeout_s: float = 30.0


class AuthConfig(BaseModel):
    """Empty cron_secret = dispatch endpoint open (dev mode)."""

    cron_secret: str = ""


class DatabaseConfig(BaseModel):
    path: str = "data/agentcron.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        AGENTCRON_ASSISTANT__MODEL=anthropic/claude-sonnet-4-5
        AGENTCRON_SCHEDULER__FAILURE_THRESHOLD=5
        AGENTCRON_AUTH__CRON_SECRET=...
        AGENTCRON_PROVIDERS__OPENAI__API_KEY=sk-...
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTCRON_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    agent_limits: AgentLimitsConfig = Field(default_factory=AgentLimitsConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # YAML arrives as init kwargs; env and .env must win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ── Computed properties ─────────────────────────────────

    @property
    def dispatch_auth_enabled(self) -> bool:
        """True when a cron secret is configured."""
        return bool(self.auth.cron_secret)

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    def get_api_base(self, model: str | None = None) -> str | None:
        """api_base of the provider named by the model prefix (``openrouter/...`` -> openrouter)."""
        prefix = (model or self.assistant.model).split("/", 1)[0].lower()
        provider = self.providers.get(prefix)
        if provider and provider.api_base:
            return provider.api_base
        return OPENROUTER_API_BASE if prefix == "openrouter" else None
