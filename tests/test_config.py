"""Tests for agentcron.core.config."""

from pathlib import Path

import pytest
import yaml

from agentcron.core.config import Config, load_config
from agentcron.core.config.loader import config_path


def test_defaults():
    cfg = Config()
    assert cfg.assistant.model == "openai/gpt-4o"
    assert cfg.scheduler.enabled is False
    assert cfg.scheduler.batch_size == 5
    assert cfg.scheduler.lease_seconds == 1800
    assert cfg.scheduler.failure_threshold == 3
    assert cfg.agent_limits.max_tool_steps == 25
    assert cfg.database.path == "data/agentcron.db"


def test_from_dict():
    cfg = Config(
        assistant={"model": "anthropic/claude-sonnet-4-5"},
        providers={"anthropic": {"api_key": "sk-test"}},
        scheduler={"failure_threshold": 5},
    )
    assert cfg.assistant.model == "anthropic/claude-sonnet-4-5"
    assert cfg.providers["anthropic"].api_key == "sk-test"
    assert cfg.scheduler.failure_threshold == 5


def test_get_api_base():
    cfg = Config(providers={"openai": {"api_base": "http://localhost:4000"}})
    assert cfg.get_api_base("openai/gpt-4o") == "http://localhost:4000"
    assert cfg.get_api_base("anthropic/claude") is None
    assert cfg.get_api_base("openrouter/meta-llama") == "https://openrouter.ai/api/v1"


def test_dispatch_auth_enabled():
    assert Config().dispatch_auth_enabled is False
    assert Config(auth={"cron_secret": "x"}).dispatch_auth_enabled is True


def test_load_yaml(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"scheduler": {"poll_interval_s": 60, "batch_size": 10}}))
    cfg = load_config(f)
    assert cfg.scheduler.poll_interval_s == 60
    assert cfg.scheduler.batch_size == 10


def test_load_missing(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.scheduler.poll_interval_s == 300


def test_load_from_env_path(tmp_path, monkeypatch):
    f = tmp_path / "other.yaml"
    f.write_text(yaml.dump({"database": {"path": "elsewhere.db"}}))
    monkeypatch.setenv("AGENTCRON_CONFIG", str(f))
    assert load_config().database.path == "elsewhere.db"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"scheduler": {"failure_threshold": 4}}))
    monkeypatch.setenv("AGENTCRON_SCHEDULER__FAILURE_THRESHOLD", "7")
    cfg = load_config(f)
    assert cfg.scheduler.failure_threshold == 7


def test_load_rejects_non_mapping(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(f)


def test_load_rejects_unknown_timezone(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"scheduler": {"default_timezone": "Mars/Olympus"}}))
    with pytest.raises(ValueError, match="default_timezone"):
        load_config(f)


def test_config_path_resolution(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENTCRON_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert config_path() is None
    (tmp_path / "config.yaml").write_text("{}")
    assert config_path() == Path("config.yaml")
    assert config_path("x.yaml") == Path("x.yaml")
