import asyncio
import logging
from contextlib import suppress
from datetime import timedelta
from typing import Awaitable, Callable, Optional, TypeVar

from ..components.errors import (
    Cancelled,
    EngineError,
    InvalidEnvironment,
    QueryFailureReason,
    SourceUnavailable,
)
from ..components.lockedvar import LockedVar
from ..components.logs import configure_logging
from ..components.metrics import QUEUES_SAMPLED, QUEUES_TOTAL, THROUGHPUT
from ..components.reporter import NullReporter, Reporter
from ..model import SamplingOutcome, SamplingWindow, Snapshot, ThroughputResult, utcnow
from ..sources.protocols import CounterSource
from .failure_budget import FailureBudget
from .tracker import QueueTracker, feed

configure_logging()
logger = logging.getLogger(__name__)

T = TypeVar("T")

# (number of attempts, delay in seconds) steps of the fast-then-slow retry pattern
DELAY_STEPS = ((20, 0.05), (100, 0.1), (160, 1.0))
SLOW_DELAY = 10.0


class DelaySchedule:
    """
    Retry delays for readings that are still missing: 20 per second for the first second,
    10 per second for the next 8 seconds, once per second for a minute, then every 10
    seconds. Starts over once `reset_after` seconds have been spent waiting.
    """

    def __init__(self, reset_after: float):
        self.reset_after = reset_after
        self.counter = 0
        self.total = 0.0

    def next(self) -> float:
        delay = SLOW_DELAY
        for limit, step in DELAY_STEPS:
            if self.counter < limit:
                delay = step
                break

        self.counter += 1
        self.total += delay
        if self.total > self.reset_after:
            self.counter = 0
            self.total = 0.0

        return delay


async def pause(seconds: float, cancel: asyncio.Event) -> bool:
    """
    Sleep for `seconds` or until `cancel` is set, whichever comes first. Returns True if
    cancelled.
    """
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=max(seconds, 0))
    except asyncio.TimeoutError:
        return False
    return True


async def interruptible(
    call: Callable[[], Awaitable[T]],
    cancel: Optional[asyncio.Event],
    timeout: Optional[float],
    what: str = "Call",
) -> T:
    """
    Await `call()` for at most `timeout` seconds, dropping it as soon as `cancel` is set.

    Raises:
        Cancelled: If `cancel` was set before the call returned.
        SourceUnavailable: If the call did not return within `timeout`.
    """
    if cancel is not None and cancel.is_set():
        raise Cancelled(f"{what} cancelled")

    task = asyncio.create_task(asyncio.wait_for(call(), timeout))
    watcher = asyncio.create_task(cancel.wait()) if cancel is not None else None
    waiting = {task} if watcher is None else {task, watcher}

    try:
        await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for item in waiting:
            item.cancel()
        await asyncio.gather(*waiting, return_exceptions=True)

    if task.cancelled():
        raise Cancelled(f"{what} cancelled")

    try:
        return task.result()
    except asyncio.TimeoutError as err:
        raise SourceUnavailable(
            f"{what} timed out after {timeout}s", QueryFailureReason.TIMEOUT
        ) from err


class SnapshotSampler:
    """
    Turns two or more snapshots of a counter source into per-queue throughput.

    The first snapshot opens the observation window. While the window runs, a background
    task keeps reading the source when either the counters can restart mid-window
    (`source.volatile`) or some queues have no baseline yet. Every reading goes through a
    reset-aware tracker per queue, so a restarted counter never produces a negative or
    undercounted value. The final snapshot closes the window.

    The tracker map is owned by a LockedVar: the background task writes it, the main task
    reads it, never both at once.
    """

    def __init__(
        self,
        source: CounterSource,
        budget: Optional[FailureBudget] = None,
        reporter: Optional[Reporter] = None,
        tick: float = 0.25,
        poll_interval: float = 300.0,
        final_sampling: timedelta = timedelta(minutes=15),
        timeout: Optional[float] = 30,
    ):
        self.source = source
        self.budget = budget or FailureBudget(source.name)
        self.reporter = reporter or NullReporter()
        self.tick = tick
        self.poll_interval = poll_interval
        self.final_sampling = final_sampling
        self.timeout = timeout

    async def sample(
        self, duration: timedelta, cancel: Optional[asyncio.Event] = None
    ) -> SamplingOutcome:
        """
        Sample the source for `duration`. Never raises for source problems: the returned
        outcome carries either the results or the error that aborted this source.
        """
        cancel = cancel or asyncio.Event()

        try:
            return await self._sample(duration, cancel)
        except EngineError as err:
            logger.error(
                "Sampling aborted",
                {"source": self.source.name, "kind": err.kind.value, "error": str(err)},
            )
            return SamplingOutcome.failed(self.source.name, err)
        finally:
            self.reporter.done()

    async def _capture(self, cancel: Optional[asyncio.Event]) -> Snapshot:
        counters = await interruptible(
            self.source.get_snapshot, cancel, self.timeout, f"Snapshot of '{self.source.name}'"
        )
        return Snapshot(counters)

    async def _initial_snapshot(
        self, duration: timedelta, cancel: asyncio.Event
    ) -> Optional[Snapshot]:
        give_up = utcnow() + duration
        schedule = DelaySchedule(reset_after=15 * 60)

        while True:
            try:
                snapshot = await self.budget.attempt(lambda: self._capture(cancel))
            except Cancelled:
                return None
            if snapshot is not None:
                return snapshot

            if utcnow() >= give_up:
                raise InvalidEnvironment(
                    f"'{self.source.name}' did not return any data during the observation window."
                )

            if await pause(schedule.next(), cancel):
                return None

    async def _poll_during_window(
        self, trackers: LockedVar, window: SamplingWindow, cancel: asyncio.Event
    ):
        schedule = DelaySchedule(reset_after=15 * 60)

        while not window.elapsed() and not cancel.is_set():
            if self.source.volatile:
                delay = self.poll_interval
            else:
                delay = schedule.next()

            if await pause(min(delay, window.remaining().total_seconds()), cancel):
                return
            if window.elapsed():
                return

            try:
                snapshot = await self.budget.attempt(lambda: self._capture(cancel))
            except Cancelled:
                return
            if snapshot is None:
                continue

            sampled = await trackers.apply(lambda t: feed(t, snapshot.counters))

            if not self.source.volatile and sampled == len(trackers.value):
                logger.info(
                    "Sampling of starting values completed for all queues",
                    {"source": self.source.name, "queues": sampled},
                )
                return

    async def _final_snapshot(
        self, trackers: LockedVar, cancel: asyncio.Event, best_effort: bool
    ) -> tuple[Optional[Snapshot], bool]:
        """
        Read final values, retrying the queues still missing one for up to
        `final_sampling`. Only one attempt is made when `best_effort` is set, and that
        attempt is bounded by the timeout alone since `cancel` is already set.

        Returns the last snapshot read and whether `cancel` cut the retries short.
        """
        give_up = utcnow() + self.final_sampling
        schedule = DelaySchedule(reset_after=5 * 60)
        last: Optional[Snapshot] = None
        watch = None if best_effort else cancel

        def missing(t: dict[str, QueueTracker]) -> int:
            return sum(1 for x in t.values() if x.has_baseline and x.final is None)

        while True:
            try:
                snapshot = await self.budget.attempt(lambda: self._capture(watch))
            except Cancelled:
                return last, True
            if snapshot is not None:
                last = snapshot
                await trackers.apply(lambda t: feed(t, snapshot.counters, final=True))

            pending = await trackers.apply(missing)
            total = len(trackers.value)
            self.reporter.progress("Final sampling", {"sampled": f"{total - pending}/{total}"})

            if best_effort or pending == 0 or utcnow() >= give_up:
                return last, best_effort

            if await pause(schedule.next(), cancel):
                return last, True

    async def _sample(self, duration: timedelta, cancel: asyncio.Event) -> SamplingOutcome:
        source = self.source.name

        logger.info("Taking initial queue statistics", {"source": source})
        initial = await self._initial_snapshot(duration, cancel)
        if initial is None:
            logger.info("Cancelled before the first snapshot", {"source": source})
            return SamplingOutcome(source, cancelled=True)

        names = sorted(name for name in initial.counters if self.source.include_queue(name))
        ignored = tuple(sorted(set(initial.counters) - set(names)))
        if not names:
            raise InvalidEnvironment(f"Unable to locate any queues in '{source}'.")

        trackers = LockedVar("trackers", {name: QueueTracker(name) for name in names})
        sampled = feed(trackers.value, initial.counters)
        QUEUES_TOTAL.labels(source).set(len(names))

        window = SamplingWindow.open(duration, start_time=initial.captured_at)

        background = None
        if self.source.volatile or sampled < len(names):
            background = asyncio.create_task(self._poll_during_window(trackers, window, cancel))

        cancelled = False
        try:
            while not window.elapsed():
                if cancel.is_set():
                    cancelled = True
                    break

                if background is not None and background.done():
                    background.result()
                    background = None

                sampled = await trackers.apply(lambda t: sum(x.has_baseline for x in t.values()))
                QUEUES_SAMPLED.labels(source).set(sampled)
                remaining = window.remaining()
                self.reporter.progress(
                    "Data collection time left",
                    {
                        "remaining": str(remaining).split(".")[0],
                        "sampled": f"{sampled}/{len(names)}",
                    },
                )
                if await pause(min(self.tick, remaining.total_seconds()), cancel):
                    cancelled = True
                    break
        finally:
            if background is not None and not background.done():
                background.cancel()
                with suppress(asyncio.CancelledError):
                    await background

        if background is not None and not background.cancelled():
            background.result()

        logger.info("Taking final queue statistics", {"source": source, "cancelled": cancelled})
        final, cancelled = await self._final_snapshot(trackers, cancel, best_effort=cancelled)
        closed = window.close(final.captured_at if final is not None else None)

        return self._outcome(trackers.value, final, closed, cancelled, ignored)

    def _outcome(
        self,
        trackers: dict[str, QueueTracker],
        final: Optional[Snapshot],
        window: SamplingWindow,
        cancelled: bool,
        ignored: tuple[str, ...],
    ) -> SamplingOutcome:
        source = self.source.name

        if not cancelled and not any(t.has_baseline for t in trackers.values()):
            raise InvalidEnvironment(
                f"None of the queues in '{source}' reported a usable counter. Is the system "
                + "actively processing messages and configured to track queue statistics?"
            )

        deleted = self.source.deleted_queues
        results: list[ThroughputResult] = []

        for name, tracker in trackers.items():
            if name in deleted:
                continue

            if tracker.final is not None:
                throughput = tracker.accumulated
            elif final is None and cancelled and tracker.has_baseline:
                # no final reading at all, keep what the window accumulated
                throughput = tracker.accumulated
            else:
                throughput = None

            results.append(ThroughputResult(name, throughput))
            if throughput is not None:
                THROUGHPUT.labels(source, name).set(throughput)

        if final is not None:
            for name in final.counters:
                if name not in trackers and name not in deleted and self.source.include_queue(name):
                    results.append(ThroughputResult(name))

        results.sort(key=lambda r: r.queue_name)
        outcome = SamplingOutcome(
            source,
            tuple(results),
            cancelled=cancelled,
            start_time=window.start_time,
            end_time=window.end_time,
            observation=window.observed,
            ignored=ignored,
        )
        QUEUES_SAMPLED.labels(source).set(outcome.captured)

        if cancelled:
            logger.warning(
                "Sampling interrupted",
                {"source": source, "captured": f"{outcome.captured}/{outcome.total}"},
            )
        else:
            logger.info(
                "Sampling complete",
                {"source": source, "captured": f"{outcome.captured}/{outcome.total}"},
            )
        return outcome


async def sample_sources(
    samplers: list[SnapshotSampler], duration: timedelta, cancel: Optional[asyncio.Event] = None
) -> list[SamplingOutcome]:
    """
    Sample several sources over the same window. One source failing only removes that
    source's contribution.
    """
    cancel = cancel or asyncio.Event()
    return list(await asyncio.gather(*(s.sample(duration, cancel) for s in samplers)))
