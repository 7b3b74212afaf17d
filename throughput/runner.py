import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Optional

from .components.config_parser import Parameters
from .components.errors import EngineError, ExitCode, InvalidEnvironment
from .components.logs import configure_logging
from .components.rate_limiter import FixedWindowRateLimiter
from .components.reporter import LoggingReporter, Reporter
from .engine import (
    AuditSampler,
    FailureBudget,
    FanOutPoller,
    SnapshotSampler,
    interruptible,
    sample_sources,
)
from .model import SamplingOutcome
from .report import OutputFileError, Report, output_path, validate_output_path
from .sources import (
    AmazonSqsMetrics,
    AzureMonitorMetrics,
    QueueTableSource,
    RabbitMQSource,
    ServiceControlClient,
)

configure_logging()
logger = logging.getLogger(__name__)


class MissingConfiguration(Exception):
    pass


@dataclass
class RunResult:
    transport: str
    report_method: str
    outcomes: list[SamplingOutcome]
    report_duration: Optional[timedelta] = None


class Runner:
    """
    Builds the sources and engine of one command line run from the configuration and
    turns their outcomes into a report and an exit code.
    """

    def __init__(self, params: Parameters, reporter: Optional[Reporter] = None):
        self.params = params
        self.reporter = reporter or LoggingReporter()

    @property
    def timeout(self) -> float:
        return self.params.poller.request_timeout_seconds

    def budget(self, source: str) -> FailureBudget:
        return FailureBudget.from_params(source, self.params.failure_budget)

    def sampler(self, source) -> SnapshotSampler:
        sampling = self.params.sampling
        return SnapshotSampler(
            source,
            self.budget(source.name),
            self.reporter,
            sampling.wait_tick_seconds,
            sampling.poll_interval,
            timedelta(minutes=sampling.final_sampling_minutes),
            self.timeout,
        )

    async def rabbitmq(self, cancel: asyncio.Event) -> RunResult:
        params = self.params.sources.rabbitmq
        if not params.url:
            raise MissingConfiguration("sources.rabbitmq.url is required")

        source = RabbitMQSource.from_params(params, self.timeout)
        outcome = await self.sampler(source).sample(self.params.sampling.window(), cancel)
        return RunResult(source.transport, source.report_method, [outcome])

    async def sqltransport(self, cancel: asyncio.Event) -> RunResult:
        params = self.params.sources.queue_tables
        if not params.urls:
            raise MissingConfiguration("sources.queue_tables.urls needs at least one database")

        sources = QueueTableSource.from_params(params, self.timeout)
        try:
            samplers = [self.sampler(source) for source in sources]
            outcomes = await sample_sources(samplers, self.params.sampling.window(), cancel)
        finally:
            for source in sources:
                source.close()

        method = ", ".join(source.report_method for source in sources)
        return RunResult(QueueTableSource.transport, method, outcomes)

    async def servicecontrol(self, cancel: asyncio.Event) -> RunResult:
        client = ServiceControlClient.from_params(self.params.sources.servicecontrol, self.timeout)
        await interruptible(client.resolve_transport, cancel, None, "Transport lookup")

        estimator = self.params.estimator
        page_size, samples, minutes = estimator.plan(self.params.sampling.test_mode)

        sampler = AuditSampler(
            client,
            self.budget(client.name),
            self.reporter,
            samples,
            minutes,
            page_size,
            estimator.safety_factor,
            estimator.max_page_fetches,
            self.timeout,
        )
        outcome = await sampler.sample(cancel)
        return RunResult(client.transport, client.report_method, [outcome])

    async def _poll(self, source, cancel: asyncio.Event) -> SamplingOutcome:
        """
        List the queues of a metrics source, then query each of them behind the shared
        rate limiter.
        """
        poller_params = self.params.poller
        try:
            names = await source.queue_names()
            included = [name for name in names if source.include_queue(name)]
            if not included:
                raise InvalidEnvironment(f"No queues found in '{source.name}'")
        except EngineError as err:
            logger.error("Unable to list queues", {"source": source.name, "error": str(err)})
            return SamplingOutcome.failed(source.name, err)

        limiter = FixedWindowRateLimiter(poller_params.permit_limit, poller_params.window_seconds)
        poller = FanOutPoller(limiter, self.reporter, self.timeout, source.name)
        outcome = await poller.poll_all(included, source.query, cancel)
        return replace(outcome, ignored=tuple(sorted(set(names) - set(included))))

    async def azureservicebus(self, cancel: asyncio.Event) -> RunResult:
        params = self.params.sources.azure_servicebus
        if not params.resource_id:
            raise MissingConfiguration("sources.azure_servicebus.resource_id is required")

        history_days = self.params.poller.history_days
        source = AzureMonitorMetrics.from_params(params, history_days, self.timeout)
        outcome = await self._poll(source, cancel)

        # the busiest single day is reported
        return RunResult(source.transport, source.report_method, [outcome], timedelta(days=1))

    async def sqs(self, cancel: asyncio.Event) -> RunResult:
        params = self.params.sources.amazon_sqs
        history_days = self.params.poller.history_days

        async with AmazonSqsMetrics.from_params(params, history_days, self.timeout) as source:
            outcome = await self._poll(source, cancel)

        return RunResult(source.transport, source.report_method, [outcome], timedelta(days=1))

    def finish(self, run: RunResult, path: Path) -> ExitCode:
        failed = [outcome for outcome in run.outcomes if not outcome.ok]
        for outcome in failed:
            logger.error(
                "Source excluded from the report",
                {"source": outcome.source, "error": str(outcome.error)},
            )

        if len(failed) == len(run.outcomes):
            return failed[0].error.exit_code

        report = Report.from_outcomes(
            self.params.report.customer_name,
            run.transport,
            run.report_method,
            run.outcomes,
            self.params.report.queue_name_masks,
            run.report_duration,
        )
        report.write(path)

        if any(outcome.cancelled for outcome in run.outcomes):
            return ExitCode.USER_CANCELLATION
        return ExitCode.SUCCESS

    async def execute(self, kind: str, cancel: Optional[asyncio.Event] = None) -> ExitCode:
        cancel = cancel or asyncio.Event()
        collect = {
            "rabbitmq": self.rabbitmq,
            "sqltransport": self.sqltransport,
            "servicecontrol": self.servicecontrol,
            "azureservicebus": self.azureservicebus,
            "sqs": self.sqs,
        }[kind]

        try:
            if not self.params.report.customer_name:
                raise MissingConfiguration("report.customer_name is required")

            self.params.sampling.window()
            path = output_path(
                self.params.report.customer_name, self.params.report.output_directory
            )
            validate_output_path(path, self.params.report.allow_overwrite)
            run = await collect(cancel)
        except MissingConfiguration as err:
            logger.error("Missing configuration", {"error": str(err)})
            return ExitCode.MISSING_CONFIG
        except ValueError as err:
            logger.error("Invalid configuration", {"error": str(err)})
            return ExitCode.INVALID_CONFIG
        except OutputFileError as err:
            logger.error("Output file unusable", {"error": str(err)})
            return ExitCode.OUTPUT_FILE
        except EngineError as err:
            logger.error("Run aborted", {"kind": err.kind.value, "error": str(err)})
            return err.exit_code

        try:
            return self.finish(run, path)
        except OSError as err:
            logger.error("Unable to write the report", {"path": str(path), "error": str(err)})
            return ExitCode.OUTPUT_FILE
