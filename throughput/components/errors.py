from enum import Enum
from typing import Iterable, Optional


class ErrorKind(Enum):
    SOURCE_UNAVAILABLE = "source_unavailable"
    INVALID_ENVIRONMENT = "invalid_environment"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


class QueryFailureReason(Enum):
    """
    Classification a source attaches to a failed query. The engine only reports it.
    """

    AUTH = "auth"
    NETWORK = "network"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


class ExitCode(int, Enum):
    SUCCESS = 0
    USER_CANCELLATION = 1
    OUTPUT_FILE = 2
    MISSING_CONFIG = 3
    INVALID_CONFIG = 4
    INVALID_ENVIRONMENT = 5
    RUNTIME_ERROR = 6
    UNEXPECTED = -2


class EngineError(Exception):
    kind: ErrorKind = ErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def exit_code(self) -> ExitCode:
        return {
            ErrorKind.SOURCE_UNAVAILABLE: ExitCode.RUNTIME_ERROR,
            ErrorKind.INVALID_ENVIRONMENT: ExitCode.INVALID_ENVIRONMENT,
            ErrorKind.CANCELLED: ExitCode.USER_CANCELLATION,
            ErrorKind.EXHAUSTED: ExitCode.RUNTIME_ERROR,
        }[self.kind]

    def __repr__(self):
        return f"{self.__class__.__name__}({self.message!r})"


class SourceUnavailable(EngineError):
    """
    Transient failure to read from a source. Retryable until the failure budget trips.
    """

    kind = ErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, message: str, reason: QueryFailureReason = QueryFailureReason.UNKNOWN):
        super().__init__(message)
        self.reason = reason


class InvalidEnvironment(EngineError):
    """
    The source answered, but what it answered cannot be used. Never retried.
    """

    kind = ErrorKind.INVALID_ENVIRONMENT


class Cancelled(EngineError):
    kind = ErrorKind.CANCELLED


class Exhausted(EngineError):
    """
    The failure budget tripped. Carries the most recent underlying errors.
    """

    kind = ErrorKind.EXHAUSTED

    def __init__(self, message: str, errors: Iterable[BaseException] = ()):
        super().__init__(message)
        self.errors = list(errors)

    @property
    def reason(self) -> Optional[QueryFailureReason]:
        for err in reversed(self.errors):
            if isinstance(err, SourceUnavailable):
                return err.reason
        return None

    def __str__(self):
        if not self.errors:
            return self.message
        last = "; ".join(str(err) for err in self.errors)
        return f"{self.message} Last errors: {last}"
