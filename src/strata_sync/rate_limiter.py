# src/strata_sync/rate_limiter.py
"""
Per-second write admission control.

The limiter hands out a fixed quota of write units per one-second window.
Capacity does not carry over between windows, so bursts never exceed one
quota.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

logger: logging.Logger = logging.getLogger(__name__)


class RateLimiter:
    """Caps the number of write operations admitted per second."""

    def __init__(
        self,
        per_second: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the rate limiter.

        Args:
            per_second (int): Write units admitted per one-second window.
            clock (Callable[[], float]): Monotonic clock in seconds.
        """
        if per_second <= 0:
            raise ValueError("per_second must be positive")
        self._quota: int = per_second
        self._clock: Callable[[], float] = clock
        self._window_start: float = clock()
        self._available: int = per_second
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def quota(self) -> int:
        return self._quota

    @property
    def available(self) -> int:
        """Units left in the current window."""
        self._refill()
        return self._available

    def _refill(self) -> None:
        elapsed: float = self._clock() - self._window_start
        if elapsed >= 1.0:
            # Align to the most recent whole-second boundary
            self._window_start += float(int(elapsed))
            self._available = self._quota

    async def acquire(self, count: int = 1) -> None:
        """
        Wait until `count` units fit in the current window, then debit them.

        A request larger than the quota is admitted once a full window is
        available and consumes all of it.

        Args:
            count (int): Number of write units to admit.
        """
        if count <= 0:
            return
        needed: int = min(count, self._quota)
        async with self._lock:
            while True:
                self._refill()
                if self._available >= needed:
                    self._available -= needed
                    return
                wait_s: float = max(
                    0.0, self._window_start + 1.0 - self._clock()
                )
                logger.debug(
                    f"Rate limit reached ({self._quota}/s), waiting {wait_s:.3f}s."
                )
                await asyncio.sleep(wait_s)


def create_rate_limiter(per_second: int) -> Optional[RateLimiter]:
    """Return a limiter for `per_second`, or None when unlimited (0)."""
    if per_second <= 0:
        return None
    return RateLimiter(per_second)
