"""Bounded retries with exponential backoff for compensating writes."""

import asyncio
import random
from typing import Any, Awaitable, Callable

from pymongo.errors import PyMongoError

from app.core.exceptions import StorageFaultError
from app.core.logging import get_logger

log = get_logger(__name__)


def backoff_delay(attempt: int, base_delay: float = 0.05, max_delay: float = 2.0) -> float:
    """Delay before retry number `attempt` (1-based), with jitter."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return delay * (0.5 + random.random() * 0.5)


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    attempts: int = 3,
    retry_on: tuple[type[BaseException], ...] = (PyMongoError, StorageFaultError),
    op: str = "operation",
    **kwargs: Any,
) -> Any:
    """Await func(*args, **kwargs), retrying on storage errors only."""
    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt == attempts:
                log.error("retry_exhausted", op=op, attempts=attempts, reason=str(e))
                raise
            log.warning("retry", op=op, attempt=attempt, reason=str(e))
            await asyncio.sleep(backoff_delay(attempt))
