"""Config file discovery and loading."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from loguru import logger

from agentcron.core.config.schema import Config
from agentcron.core.errors import ScheduleError
from agentcron.core.jobs.schedule import validate_timezone

CONFIG_ENV = "AGENTCRON_CONFIG"
DEFAULT_CONFIG = Path("config.yaml")


def config_path(explicit: str | Path | None = None) -> Path | None:
    """Which YAML file to read: explicit argument, then $AGENTCRON_CONFIG, then ./config.yaml."""
    if explicit:
        return Path(explicit)
    if os.environ.get(CONFIG_ENV):
        return Path(os.environ[CONFIG_ENV])
    return DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None


def load_config(path: str | Path | None = None) -> Config:
    """Build the Config from YAML, with env vars and .env taking precedence.

    A missing file means defaults.  A file whose top level is not a mapping,
    or a ``scheduler.default_timezone`` that is not an IANA zone, is an error.
    """
    source = config_path(path)
    data: dict = {}
    if source is not None and source.exists():
        with open(source) as f:
            loaded = yaml.safe_load(f)
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"{source}: top level must be a mapping")
        data = loaded or {}
        logger.debug(f"Config loaded from {source}")
    elif source is not None:
        logger.warning(f"Config file {source} not found, using defaults")

    config = Config(**data)
    try:
        validate_timezone(config.scheduler.default_timezone)
    except ScheduleError as e:
        raise ValueError(f"scheduler.default_timezone: {e}") from e
    return config
