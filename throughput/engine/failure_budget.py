import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from ..components.errors import Exhausted, SourceUnavailable
from ..components.logs import configure_logging
from ..components.metrics import BUDGET_STATE, FAILURE_COUNT

configure_logging()
logger = logging.getLogger(__name__)

T = TypeVar("T")


class BudgetState(Enum):
    HEALTHY = 0
    DEGRADED = 1
    HALTED = 2


class FailureBudget:
    """
    Counts failed sampling passes against a threshold.

    Every failed pass increments the failure count and breaks the success streak. A streak
    of `reset_after` successful passes clears the count. Once the count reaches `threshold`
    the budget is halted for good and every further use raises `Exhausted`, carrying the
    last `keep_errors` underlying errors.

    One instance belongs to one source for one run.
    """

    def __init__(
        self,
        source: str = "",
        threshold: int = 15,
        reset_after: int = 5,
        keep_errors: int = 5,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")

        self.source = source
        self.threshold = threshold
        self.reset_after = reset_after
        self.consecutive_failures = 0
        self.success_streak = 0
        self.errors: deque[BaseException] = deque(maxlen=keep_errors)
        self._halted = False

    @classmethod
    def from_params(cls, source: str, params) -> "FailureBudget":
        return cls(source, params.threshold, params.reset_after, params.keep_errors)

    @property
    def state(self) -> BudgetState:
        if self._halted:
            return BudgetState.HALTED
        if self.consecutive_failures > 0:
            return BudgetState.DEGRADED
        return BudgetState.HEALTHY

    def _publish(self):
        FAILURE_COUNT.labels(self.source).set(self.consecutive_failures)
        BUDGET_STATE.labels(self.source).set(self.state.value)

    def exhausted(self) -> Exhausted:
        return Exhausted(
            f"The connection to '{self.source}' has failed {self.consecutive_failures} times "
            + "and appears unreliable.",
            self.errors,
        )

    def record_success(self):
        if self._halted:
            raise self.exhausted()

        self.success_streak += 1
        if self.consecutive_failures and self.success_streak >= self.reset_after:
            logger.info(
                "Source recovered, clearing failure count",
                {"source": self.source, "previous_failures": self.consecutive_failures},
            )
            self.consecutive_failures = 0
            self.success_streak = 0

        self._publish()

    def record_failure(self, error: BaseException):
        """
        Raises:
            Exhausted: If this failure reaches the threshold.
        """
        if self._halted:
            raise self.exhausted()

        self.consecutive_failures += 1
        self.success_streak = 0
        self.errors.append(error)

        if self.consecutive_failures >= self.threshold:
            self._halted = True
            self._publish()
            logger.error(
                "Failure budget exhausted",
                {"source": self.source, "failures": self.consecutive_failures},
            )
            raise self.exhausted() from error

        logger.warning(
            "Encountered error sampling source, ignoring for now",
            {
                "source": self.source,
                "failures": self.consecutive_failures,
                "threshold": self.threshold,
                "error": str(error),
            },
        )
        self._publish()

    async def attempt(self, call: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Run one sampling pass. Returns its result, or None if it failed with a
        SourceUnavailable that the budget can still absorb.

        Raises:
            Exhausted: If the budget is, or becomes, halted.
        """
        if self._halted:
            raise self.exhausted()

        try:
            result = await call()
        except SourceUnavailable as err:
            self.record_failure(err)
            return None

        self.record_success()
        return result
