import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..components.errors import Cancelled, EngineError, InvalidEnvironment
from ..components.logs import configure_logging
from ..components.metrics import PAGE_FETCHES, THROUGHPUT
from ..components.reporter import NullReporter, Reporter
from ..model import AuditRecordPage, SamplingOutcome, ThroughputResult, utcnow
from ..sources.protocols import KnownEndpoint, MonitoringSource, PageSource
from .failure_budget import FailureBudget
from .sampler import interruptible, pause

configure_logging()
logger = logging.getLogger(__name__)


class AuditEstimator:
    """
    Estimates how many records of a newest-first paginated log were processed at or after
    a cutoff, without paging through the whole history.

    Page 1 gives an average rate, which is extrapolated (and inflated by `safety_factor`,
    so the first guess tends to overshoot) into the page likely holding the cutoff. Pages at
    multiples of that guess are fetched until one lies entirely before the cutoff, which
    brackets the cutoff between two pages. A binary search inside the bracket then finds
    the page that straddles it.

    Fetched pages are cached for the duration of one estimate. The number of fetches is
    capped by `max_page_fetches` so an inconsistent log cannot keep the search running.
    """

    def __init__(
        self,
        log: PageSource,
        page_size: int = 500,
        safety_factor: float = 1.2,
        max_page_fetches: int = 200,
        reporter: Optional[Reporter] = None,
        name: str = "",
        timeout: Optional[float] = 30,
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")

        self.log = log
        self.page_size = page_size
        self.safety_factor = safety_factor
        self.max_page_fetches = max_page_fetches
        self.reporter = reporter or NullReporter()
        self.name = name
        self.timeout = timeout
        self.fetches = 0
        self._pages: dict[int, AuditRecordPage] = {}
        self._cancel: Optional[asyncio.Event] = None

    async def _page(self, index: int) -> AuditRecordPage:
        if page := self._pages.get(index):
            return page

        if self._cancel is not None and self._cancel.is_set():
            raise Cancelled(f"Estimate for '{self.name}' cancelled")

        if self.fetches >= self.max_page_fetches:
            raise InvalidEnvironment(
                f"Audit log of '{self.name}' still not bracketed after {self.fetches} pages"
            )

        self.fetches += 1
        PAGE_FETCHES.labels(self.name).set(self.fetches)
        self.reporter.progress("Getting audit page", {"endpoint": self.name, "page": index})

        timestamps = await interruptible(
            lambda: self.log.get_page(index, self.page_size),
            self._cancel,
            self.timeout,
            f"Audit page {index} of '{self.name}'",
        )
        page = AuditRecordPage.of(timestamps, index, self.page_size)
        self._pages[index] = page
        return page

    def _total(self, page: AuditRecordPage, cutoff: datetime) -> int:
        return self.page_size * (page.page_index - 1) + page.count_since(cutoff)

    def _estimated_pages(self, first: AuditRecordPage, seconds: float) -> float:
        rate = first.average_seconds_per_record
        if rate <= 0:
            # a whole page within one clock tick, nothing to extrapolate from
            return 2.0
        return max(self.safety_factor * (seconds / rate) / self.page_size, 1.0)

    async def estimate_since(
        self,
        cutoff: datetime,
        now: Optional[datetime] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Optional[int]:
        """
        Count of records with a timestamp at or after `cutoff`, None if the log is empty.

        Raises:
            SourceUnavailable: If a page could not be fetched.
            InvalidEnvironment: If the page fetch cap was reached.
            Cancelled: If `cancel` was set while the search was running.
        """
        self._pages = {}
        self.fetches = 0
        self._cancel = cancel

        first = await self._page(1)
        if first.empty:
            return None

        if first.straddles(cutoff) or first.entirely_older(cutoff) or first.is_short:
            return first.count_since(cutoff)

        seconds = ((now or utcnow()) - cutoff).total_seconds()
        estimate = self._estimated_pages(first, seconds)
        logger.debug(
            "Estimating audit pages",
            {"endpoint": self.name, "pages": round(estimate, 1), "page_size": self.page_size},
        )

        low, high = 1, None
        factor = 1
        while high is None:
            index = max(int(factor * estimate), low + 1)
            page = await self._page(index)

            if page.straddles(cutoff):
                return self._total(page, cutoff)

            if page.entirely_older(cutoff):
                high = index
            elif page.is_short:
                # the log ends before reaching the cutoff
                return self._total(page, cutoff)
            else:
                low = index
            factor += 1

        logger.debug("Starting binary search", {"endpoint": self.name, "min": low, "max": high})

        while low != high:
            middle = (low + high) // 2
            if middle in (low, high):
                break

            page = await self._page(middle)
            if page.straddles(cutoff):
                return self._total(page, cutoff)

            if page.entirely_older(cutoff):
                high = middle
            elif page.is_short:
                return self._total(page, cutoff)
            else:
                low = middle

        return self._total(await self._page(low), cutoff)


class AuditSampler:
    """
    Samples a monitoring API `samples` times, `minutes_per_sample` apart.

    Each pass takes the bulk monitoring averages and, for endpoints that monitoring does
    not report but that have audit data, an audit log estimate over the same minutes.
    Per-endpoint figures are summed across passes.
    """

    def __init__(
        self,
        source: MonitoringSource,
        budget: Optional[FailureBudget] = None,
        reporter: Optional[Reporter] = None,
        samples: int = 24,
        minutes_per_sample: float = 60,
        page_size: int = 500,
        safety_factor: float = 1.2,
        max_page_fetches: int = 200,
        timeout: Optional[float] = 30,
    ):
        self.source = source
        self.budget = budget or FailureBudget(source.name)
        self.reporter = reporter or NullReporter()
        self.samples = samples
        self.minutes_per_sample = minutes_per_sample
        self.page_size = page_size
        self.safety_factor = safety_factor
        self.max_page_fetches = max_page_fetches
        self.timeout = timeout

    def estimator(self, endpoint: str) -> AuditEstimator:
        return AuditEstimator(
            self.source.audit_log(endpoint),
            self.page_size,
            self.safety_factor,
            self.max_page_fetches,
            self.reporter,
            endpoint,
            self.timeout,
        )

    async def _pass(self, endpoints: list[KnownEndpoint], cancel: asyncio.Event) -> dict:
        minutes = self.minutes_per_sample
        averages = await interruptible(
            lambda: self.source.monitored_throughput(minutes),
            cancel,
            self.timeout,
            f"Monitoring data of '{self.source.name}'",
        )
        results = {name: int(avg * minutes * 60) for name, avg in averages.items()}

        monitored = {name.lower() for name in results}
        now = utcnow()
        cutoff = now - timedelta(minutes=minutes)

        for endpoint in endpoints:
            if not endpoint.audited or endpoint.name.lower() in monitored:
                continue

            try:
                count = await self.estimator(endpoint.name).estimate_since(cutoff, now, cancel)
            except InvalidEnvironment as err:
                logger.warning(
                    "Unable to estimate throughput from audit data",
                    {"endpoint": endpoint.name, "error": str(err)},
                )
                continue

            if count is not None:
                results[endpoint.name] = count

        return results

    async def sample(self, cancel: Optional[asyncio.Event] = None) -> SamplingOutcome:
        cancel = cancel or asyncio.Event()
        try:
            return await self._sample(cancel)
        except EngineError as err:
            logger.error(
                "Sampling aborted",
                {"source": self.source.name, "kind": err.kind.value, "error": str(err)},
            )
            return SamplingOutcome.failed(self.source.name, err)
        finally:
            self.reporter.done()

    async def _sample(self, cancel: asyncio.Event) -> SamplingOutcome:
        source = self.source.name
        try:
            endpoints = await interruptible(
                self.source.known_endpoints, cancel, self.timeout, f"Endpoints of '{source}'"
            )
        except Cancelled:
            return SamplingOutcome(source, cancelled=True)
        if not endpoints:
            raise InvalidEnvironment(
                f"Connected to '{source}' but no known endpoints could be found. "
                + "Are you using the correct URL?"
            )

        start = utcnow() - timedelta(minutes=self.minutes_per_sample)
        totals: dict[str, int] = {}
        names: dict[str, str] = {}
        cancelled = False

        logger.info(
            "Sampling monitoring data",
            {"source": source, "samples": self.samples, "minutes": self.minutes_per_sample},
        )

        for index in range(self.samples):
            if index > 0:
                self.reporter.progress(
                    "Samplings complete", {"completed": f"{index}/{self.samples}"}
                )
                if await pause(self.minutes_per_sample * 60, cancel):
                    cancelled = True
                    break

            try:
                sampled = await self.budget.attempt(lambda: self._pass(endpoints, cancel))
            except Cancelled:
                cancelled = True
                break

            for name, count in (sampled or {}).items():
                key = name.lower()
                names.setdefault(key, name)
                totals[key] = totals.get(key, 0) + count

        for endpoint in endpoints:
            names.setdefault(endpoint.name.lower(), endpoint.name)

        results = []
        for key, name in sorted(names.items(), key=lambda item: item[1]):
            throughput = totals.get(key)
            results.append(ThroughputResult(name, throughput))
            if throughput is not None:
                THROUGHPUT.labels(source, name).set(throughput)

        end = utcnow()
        outcome = SamplingOutcome(
            source,
            tuple(results),
            cancelled=cancelled,
            start_time=start,
            end_time=end,
            observation=end - start,
        )
        logger.info(
            "Sampling complete",
            {
                "source": source,
                "captured": f"{outcome.captured}/{outcome.total}",
                "cancelled": cancelled,
            },
        )
        return outcome
