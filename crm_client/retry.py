"""
Retry with capped exponential backoff.

The delay before retry n (1-based) is base_delay * 2 ** (n - 1), capped at
max_delay. `retry_if_retryable` only retries errors classified as retryable
by `domain.errors.is_retryable`: validation, ownership and auth failures are
permanent for a given request and are raised on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from domain.errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0


def backoff_delay(
    attempt: int, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY
) -> float:
    """Delay after failed attempt `attempt` (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    should_retry: Callable[[BaseException], bool] = lambda error: True,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as error:
            if attempt >= max_attempts or not should_retry(error):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.debug("Attempt %d failed (%s); retrying in %.2fs", attempt, error, delay)
            if on_retry is not None:
                on_retry(attempt, error)
            await sleep(delay)
            attempt += 1


async def retry_if_retryable(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    return await retry_with_backoff(
        fn,
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        should_retry=is_retryable,
        on_retry=on_retry,
        sleep=sleep,
    )


__all__ = ["backoff_delay", "retry_with_backoff", "retry_if_retryable"]
