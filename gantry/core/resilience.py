"""
Gantry Core - Resilience patterns.

Async retry with exponential backoff, used for lock acquisition (retrying
AlreadyLocked while another holder finishes) and provider calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable  # noqa: TC003
from functools import wraps
from typing import Any, TypeVar

from loguru import logger

from gantry.utils.logger import log_prefix

T = TypeVar("T")


def backoff_delay(attempt: int, initial_delay: float, max_delay: float, base: float = 2.0) -> float:
    """Delay after the given failed attempt (1-based), capped at max_delay."""
    return min(initial_delay * base ** (attempt - 1), max_delay)


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Retry an async function on the listed exceptions.

    Args:
        max_attempts: Total attempts, first call included
        initial_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for any delay
        exponential_base: Growth factor between delays
        exceptions: Exception types that trigger a retry; anything else
            propagates immediately

    Example:
        @retry(max_attempts=5, initial_delay=0.5, exceptions=(AlreadyLocked,))
        async def acquire_state_lock() -> Lock:
            ...
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        if max_attempts > 1:
                            logger.error(
                                f"{log_prefix('❌')} {func.__name__}: giving up after {attempt} attempts"
                            )
                        raise
                    delay = backoff_delay(attempt, initial_delay, max_delay, exponential_base)
                    reason = str(e)
                    if len(reason) > 80:
                        reason = reason[:80] + "..."
                    logger.warning(
                        f"{log_prefix('🔄')} {func.__name__}: attempt {attempt}/{max_attempts} "
                        f"failed ({reason}), retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
