"""Tests for configuration loading."""

import pytest

from stepwise.config import GatingPolicy, load_config
from stepwise.events import get_emitter
from stepwise.events.log import LoggingEventEmitter
from stepwise.events.redis import RedisEventEmitter
from stepwise.persistence import (
    InMemoryWorkflowRepository,
    SQLWorkflowRepository,
    get_repository,
)


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
events:
  backend: redis
  redis:
    host: testhost
    port: 1234
gating:
  overrides:
    meeting: parallel
admin_actors: [root]
"""
    )
    monkeypatch.setenv("STEPWISE_CONFIG", str(config_path))

    config = load_config()
    assert config.events.backend == "redis"
    assert config.events.redis.host == "testhost"
    assert config.events.redis.port == 1234
    assert config.gating.policy_for("meeting") is GatingPolicy.PARALLEL
    assert config.gating.policy_for("onboarding") is GatingPolicy.SEQUENTIAL
    assert config.admin_actors == ["root"]
    assert config.approval_step_types == ["approval_step"]


def test_missing_config_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "nope.yaml"))
    assert config.database_url is None
    assert config.events.backend == "inmemory"
    assert config.gating.default is GatingPolicy.SEQUENTIAL


def test_env_overrides_database_and_events(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")
    monkeypatch.setenv("STEPWISE_EVENTS", "LOG")

    config = load_config(str(tmp_path / "nope.yaml"))
    assert config.database_url == "sqlite:///from-env.db"
    assert config.events.backend == "log"


def test_get_emitter_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
events:
  backend: redis
  key: audit
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("STEPWISE_CONFIG", str(config_path))

    emitter = get_emitter()
    assert isinstance(emitter, RedisEventEmitter)
    assert emitter.host == "confighost"
    assert emitter.port == 6380
    assert emitter.key == "audit"

    assert isinstance(get_emitter("log"), LoggingEventEmitter)


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    assert isinstance(get_repository(), InMemoryWorkflowRepository)
    # The in-memory instance is reused until a backend is requested explicitly.
    assert get_repository() is get_repository()

    repo = get_repository(f"sqlite:///{tmp_path}/wf.db")
    assert isinstance(repo, SQLWorkflowRepository)
    assert repo.database_url.startswith("sqlite+aiosqlite:///")

    monkeypatch.setenv("STEPWISE_DATABASE_URL", f"sqlite:///{tmp_path}/env.db")
    repo = get_repository(config=load_config())
    assert isinstance(repo, SQLWorkflowRepository)
    assert repo.database_url.endswith("env.db")


def test_get_repository_rejects_unknown_scheme():
    with pytest.raises(ValueError):
        get_repository("mysql://db/stepwise")
