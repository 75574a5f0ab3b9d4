"""In-memory event emitter for testing."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from ..contracts import EngineEvent
from .base import EventEmitter


class InMemoryEventEmitter(EventEmitter):
    """Collect events in a list in emission order."""

    def __init__(self) -> None:
        self.events: List[EngineEvent] = []
        self._lock = asyncio.Lock()

    async def emit(self, event: EngineEvent) -> None:
        async with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> List[EngineEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def for_entity(
        self, entity_id: str, event_type: Optional[str] = None
    ) -> List[EngineEvent]:
        return [
            e
            for e in self.events
            if e.entity_id == entity_id
            and (event_type is None or e.event_type == event_type)
        ]
