# src/strata_sync/retry.py
"""Exponential-backoff retry policy for remote writes."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryHook = Callable[[int, int, Exception, float], None]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before the retry that follows the zero-based `attempt`."""
    return min(base_delay * (2**attempt), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[RetryHook] = None,
) -> T:
    """
    Await `operation`, retrying failures with capped exponential backoff.

    The operation is attempted `retries + 1` times in total. `on_retry` is
    called before each sleep with (attempt, retries, error, delay) and has
    no influence on control flow.

    Args:
        operation (Callable[[], Awaitable[T]]): A factory producing a fresh
            awaitable for every attempt. Must be idempotent.
        retries (int): Number of retries after the first attempt.
        base_delay (float): Delay in seconds before the first retry.
        max_delay (float): Upper bound for any single delay, in seconds.
        on_retry (RetryHook, optional): Observation hook.

    Returns:
        T: The result of the first successful attempt.

    Raises:
        Exception: The error of the last attempt once retries are exhausted.
    """
    attempt: int = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= retries:
                raise
            delay: float = backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, retries, e, delay)
            else:
                logger.debug(
                    f"Retry {attempt}/{retries} in {delay:.2f}s after "
                    f"{type(e).__name__}: {e}"
                )
            await asyncio.sleep(delay)
