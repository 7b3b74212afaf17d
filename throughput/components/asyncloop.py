import asyncio
import logging
from signal import SIGINT, SIGTERM
from typing import Awaitable, Callable, Optional, TypeVar

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncLoop:
    """
    Owns the event loop of one command line run. SIGINT and SIGTERM set `cancel` instead of
    killing the process, so the engine can flush whatever it already captured.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self.cancel: Optional[asyncio.Event] = None
        self.signals = 0

        for sig in (SIGINT, SIGTERM):
            try:
                self.loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers not supported", {"signal": int(sig)})

    def stop(self):
        self.signals += 1
        if self.cancel is None:
            return

        if self.cancel.is_set():
            logger.warning("Cancellation already requested, still flushing results")
            return

        logger.warning("Cancellation requested, collecting the data captured so far")
        self.cancel.set()

    def run(self, process: Callable[[asyncio.Event], Awaitable[T]]) -> T:
        """
        Run `process(cancel)` to completion, then close the loop whatever the outcome.
        """
        asyncio.set_event_loop(self.loop)

        async def main():
            self.cancel = asyncio.Event()
            return await process(self.cancel)

        try:
            return self.loop.run_until_complete(main())
        except asyncio.CancelledError:
            logger.error("Stopping the instance")
            raise
        finally:
            self.loop.close()
