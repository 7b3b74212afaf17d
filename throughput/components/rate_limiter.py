"""
Fixed window rate limiter for metrics APIs that enforce a request quota.

Callers that arrive once the window's permits are spent are queued, not rejected, and are
released in arrival order when the next window opens.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class FixedWindowRateLimiter:
    """
    Hands out at most `permit_limit` permits per `window` seconds.

    Algorithm:
        - The first acquire opens a window at the current time
        - Each acquire inside the window consumes one permit
        - When the permits are spent, the caller sleeps until the window ends, a fresh window
          opens and the caller takes its first permit

    Waiters queue on an asyncio.Lock, which wakes them in FIFO order.
    """

    def __init__(
        self,
        permit_limit: int = 100,
        window: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            permit_limit: Permits available per window (default: 100, a quarter of the
                usual cloud metrics quota)
            window: Window length in seconds (default: 1.0)
            clock: Monotonic clock, injectable for tests
        """
        if permit_limit < 1:
            raise ValueError("permit_limit must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.permit_limit = permit_limit
        self.window = window
        self._clock = clock or time.monotonic
        self._lock = asyncio.Lock()
        self._window_start: Optional[float] = None
        self._used = 0
        self.queued = 0

    def _roll(self, now: float):
        if self._window_start is None or now - self._window_start >= self.window:
            self._window_start = now
            self._used = 0

    async def acquire(self):
        self.queued += 1
        try:
            async with self._lock:
                while True:
                    now = self._clock()
                    self._roll(now)

                    if self._used < self.permit_limit:
                        self._used += 1
                        return

                    wait_time = self.window - (now - self._window_start)
                    logger.debug(
                        "Rate limit reached, waiting for next window",
                        {"wait_time_seconds": round(wait_time, 3), "queued": self.queued},
                    )
                    await asyncio.sleep(wait_time)
        finally:
            self.queued -= 1
