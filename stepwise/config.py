from __future__ import annotations

import os
from enum import Enum
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_APPROVAL_STEP_TYPES,
    DEFAULT_EMIT_TIMEOUT,
    DEFAULT_EVENTS_KEY,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis event backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class EventsConfig(BaseModel):
    """Event emitter configuration settings."""

    backend: Literal["inmemory", "log", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    key: str = DEFAULT_EVENTS_KEY
    emit_timeout: float = DEFAULT_EMIT_TIMEOUT


class GatingPolicy(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class GatingConfig(BaseModel):
    """Which steps may leave ``pending``, per workflow type."""

    default: GatingPolicy = GatingPolicy.SEQUENTIAL
    overrides: Dict[str, GatingPolicy] = Field(default_factory=dict)

    def policy_for(self, workflow_type: str) -> GatingPolicy:
        return self.overrides.get(workflow_type, self.default)


class StepwiseConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    events: EventsConfig = EventsConfig()
    gating: GatingConfig = GatingConfig()
    approval_step_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_APPROVAL_STEP_TYPES)
    )
    admin_actors: List[str] = Field(default_factory=list)
    pack_paths: List[str] = Field(default_factory=list)


def load_config(path: Optional[str] = None) -> StepwiseConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWISE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWISE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepwiseConfig(**data)
    else:
        config = StepwiseConfig()

    env_db_url = os.getenv("STEPWISE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_events = os.getenv("STEPWISE_EVENTS")
    if env_events:
        config.events.backend = env_events.lower()
    return config
