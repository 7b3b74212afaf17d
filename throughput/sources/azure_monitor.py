import logging
from datetime import datetime, timedelta
from typing import Optional

from ..components.errors import InvalidEnvironment, QueryFailureReason, SourceUnavailable
from ..components.logs import configure_logging
from ..model import DailyThroughput, ThroughputResult, utcnow
from .http import JSONClient
from .protocols import is_infrastructure_queue

configure_logging()
logger = logging.getLogger(__name__)

SERVICEBUS_API_VERSION = "2021-11-01"
METRICS_API_VERSION = "2018-01-01"
METRIC_NAME = "CompleteMessage"


class AzureMonitorMetrics:
    """
    Completed message totals per queue of an Azure Service Bus namespace, one query per
    queue against Azure Monitor. Each queue reports its busiest day over the history.
    """

    transport = "AzureServiceBus"

    def __init__(self, client: JSONClient, resource_id: str, history_days: int = 30):
        if not resource_id or "/namespaces/" not in resource_id.lower():
            raise InvalidEnvironment(
                "The resource id must point to a Service Bus namespace, e.g. /subscriptions/"
                + "<id>/resourceGroups/<group>/providers/Microsoft.ServiceBus/namespaces/<name>"
            )

        self.client = client
        self.resource_id = "/" + resource_id.strip("/")
        self.history_days = history_days
        self.name = self.resource_id.rsplit("/", 1)[-1]
        self.end_time = utcnow()
        self.start_time = self.end_time - timedelta(days=history_days)

    @classmethod
    def from_params(cls, params, history_days: int, timeout: Optional[float] = 30):
        headers = {"Authorization": f"Bearer {params.token}"} if params.token else {}
        client = JSONClient(params.management_url, timeout, headers=headers)
        return cls(client, params.resource_id, history_days)

    @property
    def report_method(self) -> str:
        return f"AzureServiceBus Metrics: {self.name}"

    def include_queue(self, name: str) -> bool:
        return not is_infrastructure_queue(name)

    async def queue_names(self) -> list[str]:
        names = []
        path = f"{self.resource_id}/queues"
        params: Optional[dict] = {"api-version": SERVICEBUS_API_VERSION}

        while path:
            body = await self.client.get_json(path, params)
            try:
                names.extend(item["name"] for item in body.get("value", []))
            except (AttributeError, KeyError, TypeError) as err:
                raise SourceUnavailable(
                    "Service Bus returned an unexpected queue list",
                    QueryFailureReason.MALFORMED_RESPONSE,
                ) from err

            # the next link already carries every query parameter
            path, params = body.get("nextLink"), None

        logger.info("Discovered queues", {"namespace": self.name, "count": len(names)})
        return sorted(names)

    def _timespan(self) -> str:
        fmt = "%Y-%m-%dT%H:%M:%SZ"
        return f"{self.start_time.strftime(fmt)}/{self.end_time.strftime(fmt)}"

    async def query(self, queue_name: str) -> ThroughputResult:
        body = await self.client.get_json(
            f"{self.resource_id}/providers/Microsoft.Insights/metrics",
            {
                "api-version": METRICS_API_VERSION,
                "metricnames": METRIC_NAME,
                "aggregation": "Total",
                "interval": "P1D",
                "timespan": self._timespan(),
                "$filter": f"EntityName eq '{queue_name}'",
            },
        )

        try:
            series = body["value"][0]["timeseries"]
            data = series[0]["data"] if series else []
            daily = [
                DailyThroughput(
                    datetime.fromisoformat(entry["timeStamp"].replace("Z", "+00:00")).date(),
                    int(entry.get("total") or 0),
                )
                for entry in data
            ]
        except (IndexError, KeyError, TypeError, ValueError) as err:
            raise SourceUnavailable(
                f"Metrics for '{queue_name}' could not be read",
                QueryFailureReason.MALFORMED_RESPONSE,
            ) from err

        return ThroughputResult.from_daily(queue_name, daily)

