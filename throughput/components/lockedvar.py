import asyncio
import logging
from typing import Any, Callable

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class LockedVar:
    """
    A variable whose every access goes through an asyncio lock. Shared between the task that
    writes it and the tasks that read it, so readers always see a value no writer is halfway
    through changing.
    """

    def __init__(self, name: str, value: Any):
        self.name = name
        self.value = value
        self.lock = asyncio.Lock()

    async def inc(self, amount: int = 1) -> int:
        """
        Fetch-and-add. Returns the value after the increment.
        """
        async with self.lock:
            self.value += amount
            return self.value

    async def apply(self, func: Callable[[Any], Any]) -> Any:
        """
        Run `func` on the stored value while holding the lock and return its result. Used to
        mutate containers in place without exposing them outside the lock.
        """
        async with self.lock:
            return func(self.value)
