"""Base event emitter interface."""

from __future__ import annotations

import abc
import asyncio
import logging

from ..contracts import EngineEvent

logger = logging.getLogger(__name__)


class EventEmitter(metaclass=abc.ABCMeta):
    """Abstract sink for engine audit events."""

    async def connect(self) -> None:
        """Open connection to the backend (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backend (no-op by default)."""
        pass

    @abc.abstractmethod
    async def emit(self, event: EngineEvent) -> None:
        """Deliver one event."""
        raise NotImplementedError


async def publish_event(
    emitter: EventEmitter, event: EngineEvent, timeout: float | None = None
) -> bool:
    """Emit ``event`` after a committed transition.

    The transition is already durable, so delivery problems are logged and
    reported through the return value instead of being raised.
    """
    try:
        await asyncio.wait_for(emitter.emit(event), timeout=timeout)
    except Exception as e:
        logger.error(
            f"Failed to emit {event.event_type} for {event.entity_type} "
            f"{event.entity_id}: {e!r}"
        )
        return False
    return True
