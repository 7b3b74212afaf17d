import logging
import sys
import time
from typing import Callable, Optional, Protocol, TextIO

from .logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class Reporter(Protocol):
    """
    Progress sink handed to the engine. The engine never writes to the console itself.
    """

    def progress(self, message: str, fields: Optional[dict] = None) -> None: ...

    def done(self) -> None: ...


class NullReporter:
    def progress(self, message: str, fields: Optional[dict] = None) -> None:
        pass

    def done(self) -> None:
        pass


class LoggingReporter:
    """
    Logs progress for runs without a console. A repeated message is logged at most once
    per `interval` seconds, a new message right away.
    """

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        level: int = logging.INFO,
        interval: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.log = log or logger
        self.level = level
        self.interval = interval
        self.clock = clock or time.monotonic
        self._last: Optional[tuple[str, float]] = None

    def progress(self, message: str, fields: Optional[dict] = None) -> None:
        now = self.clock()
        if self._last is not None:
            last_message, logged_at = self._last
            if message == last_message and now - logged_at < self.interval:
                return
        self._last = (message, now)

        if fields:
            self.log.log(self.level, message, fields)
        else:
            self.log.log(self.level, message)

    def done(self) -> None:
        self._last = None


class ConsoleReporter:
    """
    Rewrites a single console line with the latest countdown or "N/total" counter.
    """

    def __init__(self, stream: TextIO = sys.stdout):
        self.stream = stream
        self._width = 0

    def progress(self, message: str, fields: Optional[dict] = None) -> None:
        if fields:
            message = f"{message} - " + ", ".join(f"{k}: {v}" for k, v in fields.items())

        padding = " " * max(self._width - len(message), 0)
        self.stream.write(f"\r{message}{padding}")
        self.stream.flush()
        self._width = len(message)

    def done(self) -> None:
        if self._width:
            self.stream.write("\n")
            self.stream.flush()
        self._width = 0
