"""Redis event emitter for cross-process audit consumers."""

from __future__ import annotations

from typing import Any, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import DEFAULT_EVENTS_KEY
from ..contracts import EngineEvent
from .base import EventEmitter


class RedisEventEmitter(EventEmitter):
    """Push events onto a Redis list acting as a queue."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key: str = DEFAULT_EVENTS_KEY,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisEventEmitter")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key = key
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def emit(self, event: EngineEvent) -> None:
        """Publish event JSON to the Redis list."""
        if not self._redis:
            await self.connect()
        await self._redis.lpush(self.key, event.to_json())
