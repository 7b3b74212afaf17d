from . import config_parser, decorators
from .asyncloop import AsyncLoop
from .errors import (
    Cancelled,
    EngineError,
    ErrorKind,
    Exhausted,
    ExitCode,
    InvalidEnvironment,
    QueryFailureReason,
    SourceUnavailable,
)
from .lockedvar import LockedVar
from .rate_limiter import FixedWindowRateLimiter
from .reporter import ConsoleReporter, LoggingReporter, NullReporter, Reporter

__all__ = [
    "AsyncLoop",
    "Cancelled",
    "ConsoleReporter",
    "EngineError",
    "ErrorKind",
    "Exhausted",
    "ExitCode",
    "FixedWindowRateLimiter",
    "InvalidEnvironment",
    "LockedVar",
    "LoggingReporter",
    "NullReporter",
    "QueryFailureReason",
    "Reporter",
    "SourceUnavailable",
    "config_parser",
    "decorators",
]
