from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt)
    await asyncio.sleep(delay)


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]], attempts: int = 3
) -> T:
    """Run ``operation`` again after each ``Conflict``, up to ``attempts`` times.

    ``operation`` must re-read whatever version it passes to the engine on
    every call, otherwise each retry conflicts the same way.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Conflict as e:
            if attempt == attempts:
                raise
            logger.warning(
                f"Conflict on attempt {attempt}/{attempts} for "
                f"{e.details.get('entity_id')}; retrying"
            )
            await schedule_retry(attempt)
    raise ValueError("attempts must be at least 1")
