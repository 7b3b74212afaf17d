import logging
from contextlib import AsyncExitStack
from datetime import datetime, time, timedelta, timezone
from typing import Optional

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, NoRegionError

from ..components.errors import InvalidEnvironment, QueryFailureReason, SourceUnavailable
from ..components.logs import configure_logging
from ..model import DailyThroughput, ThroughputResult, utcnow
from .protocols import is_infrastructure_queue

configure_logging()
logger = logging.getLogger(__name__)

NAMESPACE = "AWS/SQS"
METRIC_NAME = "NumberOfMessagesDeleted"
DAY_SECONDS = 24 * 60 * 60
LIST_PAGE_SIZE = 1000

AUTH_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "ExpiredToken",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "UnrecognizedClientException",
}


def failure(err: Exception, message: str) -> SourceUnavailable:
    """
    Classify an AWS SDK error the way the engine reports query failures.
    """
    if isinstance(err, ClientError):
        code = err.response.get("Error", {}).get("Code", "")
        auth = code in AUTH_ERROR_CODES
        reason = QueryFailureReason.AUTH if auth else QueryFailureReason.UNKNOWN
        return SourceUnavailable(f"{message}: {code or err}", reason)

    if isinstance(err, NoCredentialsError):
        return SourceUnavailable(f"{message}: {err}", QueryFailureReason.AUTH)

    return SourceUnavailable(f"{message}: {err}", QueryFailureReason.NETWORK)


class AmazonSqsMetrics:
    """
    Deleted message totals per SQS queue from CloudWatch, one daily `Sum` query per queue.
    Each queue reports its busiest day over the history.

    Clients are opened when entering the `async with` block and shared by every query.
    """

    transport = "AmazonSQS"
    report_method = "AWS CloudWatch Metrics"

    def __init__(
        self,
        session: aioboto3.Session,
        region: Optional[str] = None,
        prefix: str = "",
        history_days: int = 30,
        timeout: Optional[float] = 30,
    ):
        self.session = session
        self.region = region
        self.prefix = prefix or ""
        self.history_days = history_days
        self.name = f"sqs-{region or 'default'}"
        self.config = Config(connect_timeout=timeout, read_timeout=timeout)

        # whole days, the end bound is exclusive so today is included
        tomorrow = utcnow().date() + timedelta(days=1)
        self.end_time = datetime.combine(tomorrow, time(), timezone.utc)
        self.start_time = self.end_time - timedelta(days=history_days)

        self._stack: Optional[AsyncExitStack] = None
        self._sqs = None
        self._cloudwatch = None

    @classmethod
    def from_params(cls, params, history_days: int, timeout: Optional[float] = 30):
        session = aioboto3.Session(
            profile_name=params.profile or None, region_name=params.region or None
        )
        return cls(session, params.region, params.queue_name_prefix, history_days, timeout)

    async def __aenter__(self) -> "AmazonSqsMetrics":
        self._stack = AsyncExitStack()
        try:
            self._sqs = await self._stack.enter_async_context(
                self.session.client("sqs", region_name=self.region, config=self.config)
            )
            self._cloudwatch = await self._stack.enter_async_context(
                self.session.client("cloudwatch", region_name=self.region, config=self.config)
            )
        except NoRegionError as err:
            await self._stack.aclose()
            raise InvalidEnvironment(
                "No AWS region configured, set sources.amazon_sqs.region or AWS_DEFAULT_REGION."
            ) from err
        except (BotoCoreError, ClientError) as err:
            await self._stack.aclose()
            raise failure(err, "Unable to create the AWS clients") from err
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = self._sqs = self._cloudwatch = None

    def include_queue(self, name: str) -> bool:
        return not is_infrastructure_queue(name)

    async def queue_names(self) -> list[str]:
        names: list[str] = []
        request = {"MaxResults": LIST_PAGE_SIZE}
        if self.prefix:
            request["QueueNamePrefix"] = self.prefix

        while True:
            try:
                page = await self._sqs.list_queues(**request)
            except (BotoCoreError, ClientError) as err:
                raise failure(err, "Unable to list the SQS queues") from err

            # https://sqs.<region>.amazonaws.com/<account>/<name>
            names.extend(url.rstrip("/").rsplit("/", 1)[-1] for url in page.get("QueueUrls", []))
            token = page.get("NextToken")
            if not token:
                break
            request["NextToken"] = token

        logger.info("Discovered queues", {"source": self.name, "count": len(names)})
        return sorted(names)

    async def query(self, queue_name: str) -> ThroughputResult:
        try:
            body = await self._cloudwatch.get_metric_statistics(
                Namespace=NAMESPACE,
                MetricName=METRIC_NAME,
                Dimensions=[{"Name": "QueueName", "Value": queue_name}],
                StartTime=self.start_time,
                EndTime=self.end_time,
                Period=DAY_SECONDS,
                Statistics=["Sum"],
            )
        except (BotoCoreError, ClientError) as err:
            raise failure(err, f"Metrics for '{queue_name}' could not be read") from err

        try:
            daily = [
                DailyThroughput(point["Timestamp"].date(), int(point.get("Sum") or 0))
                for point in body.get("Datapoints", [])
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as err:
            raise SourceUnavailable(
                f"Metrics for '{queue_name}' could not be read",
                QueryFailureReason.MALFORMED_RESPONSE,
            ) from err

        return ThroughputResult.from_daily(queue_name, daily)
