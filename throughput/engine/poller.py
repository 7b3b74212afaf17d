import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Union

from ..components.errors import QueryFailureReason, SourceUnavailable
from ..components.lockedvar import LockedVar
from ..components.logs import configure_logging
from ..components.metrics import POLL_COMPLETED, RATE_LIMIT_QUEUED, THROUGHPUT
from ..components.rate_limiter import FixedWindowRateLimiter
from ..components.reporter import NullReporter, Reporter
from ..model import SamplingOutcome, ThroughputResult, utcnow

configure_logging()
logger = logging.getLogger(__name__)

QueryResult = Union[int, None, ThroughputResult]
Query = Callable[[str], Awaitable[QueryResult]]


class FanOutPoller:
    """
    Runs one remote query per queue, all at once, each behind a permit of the shared rate
    limiter. A failing query only costs its own queue, which is reported as no data.
    """

    def __init__(
        self,
        limiter: Optional[FixedWindowRateLimiter] = None,
        reporter: Optional[Reporter] = None,
        timeout: Optional[float] = 30,
        source: str = "",
    ):
        self.limiter = limiter
        self.reporter = reporter or NullReporter()
        self.timeout = timeout
        self.source = source

    async def _query(
        self, name: str, query: Query, completed: LockedVar, total: int
    ) -> tuple[ThroughputResult, Optional[BaseException]]:
        error = None
        try:
            if self.limiter is not None:
                RATE_LIMIT_QUEUED.labels(self.source).set(self.limiter.queued + 1)
                await self.limiter.acquire()

            value = await asyncio.wait_for(query(name), self.timeout)
            if isinstance(value, ThroughputResult):
                result = value
            else:
                result = ThroughputResult(name, value)
        except asyncio.TimeoutError as err:
            error = SourceUnavailable(f"Query for '{name}' timed out", QueryFailureReason.TIMEOUT)
            error.__cause__ = err
        except Exception as err:
            error = err

        if error is not None:
            logger.warning(
                "Unable to query queue, reporting no data",
                {"source": self.source, "queue": name, "error": str(error)},
            )
            result = ThroughputResult(name)

        done = await completed.inc()
        POLL_COMPLETED.labels(self.source).set(done)
        self.reporter.progress("Querying queues", {"completed": f"{done}/{total}"})
        return result, error

    async def poll_all(
        self,
        queue_names: Iterable[str],
        query: Query,
        cancel: Optional[asyncio.Event] = None,
    ) -> SamplingOutcome:
        """
        Query every queue concurrently. Every queue appears in the outcome, with no data
        if its query failed or was cancelled.
        """
        names = list(queue_names)
        cancel = cancel or asyncio.Event()
        completed = LockedVar("completed", 0)
        start = utcnow()

        tasks = {
            asyncio.create_task(self._query(name, query, completed, len(names))): name
            for name in names
        }
        watcher = asyncio.create_task(cancel.wait())

        results: dict[str, ThroughputResult] = {}
        errors: list[BaseException] = []
        pending = set(tasks)
        cancelled = False

        try:
            while pending:
                done, _ = await asyncio.wait(
                    pending | {watcher}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done - {watcher}:
                    pending.discard(task)
                    result, error = task.result()
                    results[result.queue_name] = result
                    if error is not None:
                        errors.append(error)

                if watcher in done and pending:
                    cancelled = True
                    break
        finally:
            for task in pending:
                task.cancel()
            watcher.cancel()
            await asyncio.gather(*pending, watcher, return_exceptions=True)
            self.reporter.done()

        for task in pending:
            results[tasks[task]] = ThroughputResult(tasks[task])

        ordered = tuple(sorted(results.values(), key=lambda r: r.queue_name))
        for result in ordered:
            if result.throughput is not None:
                THROUGHPUT.labels(self.source, result.queue_name).set(result.throughput)

        end = utcnow()
        outcome_args = dict(
            cancelled=cancelled, start_time=start, end_time=end, observation=end - start
        )

        if names and not cancelled and len(errors) == len(names):
            last = errors[-1]
            reason = getattr(last, "reason", QueryFailureReason.UNKNOWN)
            error = SourceUnavailable(
                f"Every query to '{self.source}' failed, last error: {last}", reason
            )
            logger.error("Source unreachable", {"source": self.source, "queries": len(names)})
            return SamplingOutcome(self.source, ordered, error, **outcome_args)

        outcome = SamplingOutcome(self.source, ordered, **outcome_args)
        logger.info(
            "Polling complete",
            {
                "source": self.source,
                "captured": f"{outcome.captured}/{outcome.total}",
                "failed": len(errors),
                "cancelled": cancelled,
            },
        )
        return outcome
