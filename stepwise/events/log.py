"""Event emitter that writes events to the standard logging system."""

from __future__ import annotations

import logging

from ..contracts import EngineEvent
from .base import EventEmitter


class LoggingEventEmitter(EventEmitter):
    def __init__(self, logger_name: str = "stepwise.events", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    async def emit(self, event: EngineEvent) -> None:
        self._logger.log(self._level, event.to_json())
