"""Event emitter factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwiseConfig, load_config
from .base import EventEmitter, publish_event
from .inmemory import InMemoryEventEmitter
from .log import LoggingEventEmitter


def get_emitter(
    backend: Optional[str] = None, config: Optional[StepwiseConfig] = None
) -> EventEmitter:
    """Factory function to get the configured event emitter."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("STEPWISE_EVENTS")
        or config.events.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryEventEmitter()
    elif backend == "log":
        return LoggingEventEmitter()
    elif backend == "redis":
        from .redis import RedisEventEmitter

        redis_conf = config.events.redis
        return RedisEventEmitter(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            key=config.events.key,
        )
    else:
        raise ValueError(f"Unsupported events backend: {backend}")


__all__ = [
    "EventEmitter",
    "InMemoryEventEmitter",
    "LoggingEventEmitter",
    "get_emitter",
    "publish_event",
]
