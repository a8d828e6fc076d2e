"""Retry with exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``fn`` up to ``attempts`` times, doubling the wait after each failure.

    The wait after failed attempt ``k`` is ``base_delay * 2 ** (k - 1)``. The
    error from the final attempt is re-raised.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts:
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}. Retrying in {delay:g}s..."
            )
            await sleep(delay)
    raise ValueError("attempts must be at least 1")
