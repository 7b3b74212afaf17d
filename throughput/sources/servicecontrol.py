import logging
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence
from urllib.parse import quote

from ..components.decorators import retried
from ..components.errors import InvalidEnvironment, QueryFailureReason, SourceUnavailable
from ..components.logs import configure_logging
from .http import JSONClient
from .protocols import KnownEndpoint

configure_logging()
logger = logging.getLogger(__name__)

TRANSPORT_UNKNOWN = "ServiceControl"
CUSTOMIZATION_SUFFIX = "TransportCustomization"


def parse_timestamp(value: str) -> datetime:
    """
    ISO 8601 timestamp as returned by the API, naive values taken as UTC.
    """
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AuditLog:
    """
    Audited messages of one endpoint, newest first.
    """

    def __init__(self, client: JSONClient, endpoint: str):
        self.client = client
        self.endpoint = endpoint

    @retried(3)
    async def get_page(self, page_index: int, page_size: int) -> Sequence[datetime]:
        body = await self.client.get_json(
            f"/endpoints/{quote(self.endpoint, safe='')}/messages/",
            {
                "page": page_index,
                "per_page": page_size,
                "sort": "processed_at",
                "direction": "desc",
            },
        )
        if not isinstance(body, list):
            raise SourceUnavailable(
                f"Audit page {page_index} of '{self.endpoint}' is not a list",
                QueryFailureReason.MALFORMED_RESPONSE,
            )

        try:
            return [parse_timestamp(item["processed_at"]) for item in body]
        except (KeyError, TypeError, ValueError) as err:
            raise SourceUnavailable(
                f"Audit page {page_index} of '{self.endpoint}' has unreadable timestamps",
                QueryFailureReason.MALFORMED_RESPONSE,
            ) from err


class ServiceControlClient:
    """
    Monitoring source over the ServiceControl API (known endpoints and audit logs) and the
    ServiceControl Monitoring API (recent throughput averages).
    """

    report_method = "ServiceControl API"

    def __init__(self, primary: JSONClient, monitoring: JSONClient, name: str = "servicecontrol"):
        self.primary = primary
        self.monitoring = monitoring
        self.name = name
        self.transport = TRANSPORT_UNKNOWN

    @classmethod
    def from_params(cls, params, timeout: Optional[float] = 30) -> "ServiceControlClient":
        return cls(JSONClient(params.url, timeout), JSONClient(params.monitoring_url, timeout))

    @retried(5)
    async def resolve_transport(self) -> str:
        """
        Name of the transport ServiceControl is configured with, e.g. `RabbitMQ` for
        `ServiceControl.Transports.RabbitMQ.RabbitMQConventionalRoutingTransportCustomization`.

        Raises:
            InvalidEnvironment: If the configuration does not name a transport, which only
                unsupported ServiceControl versions do.
        """
        body = await self.primary.get_json("/configuration")
        transport = body.get("transport") if isinstance(body, dict) else None
        if isinstance(transport, dict):
            type_name = transport.get("transport_customization_type") or transport.get(
                "transport_type"
            )
        else:
            type_name = None

        if not type_name:
            raise InvalidEnvironment(
                "This version of ServiceControl is not supported. Update to a supported "
                + "version of ServiceControl."
            )

        # assembly qualified name, the class name is the last part of the type name
        class_name = type_name.split(",")[0].split(".")[-1].strip()
        self.transport = class_name.removesuffix(CUSTOMIZATION_SUFFIX) or class_name

        logger.info("ServiceControl transport", {"transport": self.transport})
        return self.transport

    @retried(5)
    async def _get_endpoints(self) -> list:
        body = await self.primary.get_json("/endpoints")
        if not isinstance(body, list):
            raise SourceUnavailable(
                "ServiceControl returned an unexpected endpoint list",
                QueryFailureReason.MALFORMED_RESPONSE,
            )
        return body

    async def _has_audit_data(self, endpoint: str) -> bool:
        body = await self.primary.get_json(
            f"/endpoints/{quote(endpoint, safe='')}/messages/", {"per_page": 1}
        )
        return bool(body)

    async def known_endpoints(self) -> list[KnownEndpoint]:
        """
        Endpoints known to ServiceControl, one entry per name.

        Raises:
            InvalidEnvironment: If the answer does not look like a ServiceControl endpoint list.
        """
        heartbeats: dict[str, bool] = {}
        for item in await self._get_endpoints():
            try:
                name = item["name"]
                monitored = bool(item.get("monitored"))
            except (KeyError, TypeError, AttributeError) as err:
                raise InvalidEnvironment(
                    "ServiceControl returned an endpoint without a name. Are you using the "
                    + "correct URL?"
                ) from err
            heartbeats[name] = heartbeats.get(name, False) or monitored

        endpoints = []
        for name in sorted(heartbeats):
            audited = await self._has_audit_data(name)
            endpoints.append(KnownEndpoint(name, audited, heartbeats[name]))

        logger.info(
            "Known endpoints",
            {"count": len(endpoints), "audited": sum(1 for e in endpoints if e.audited)},
        )
        return endpoints

    @retried(5)
    async def monitored_throughput(self, minutes: float) -> Mapping[str, float]:
        body = await self.monitoring.get_json("/monitored-endpoints", {"history": int(minutes)})

        try:
            return {
                item["name"]: float(item["metrics"]["throughput"]["average"] or 0)
                for item in body
            }
        except (KeyError, TypeError, ValueError) as err:
            raise SourceUnavailable(
                "Monitoring returned an unexpected endpoint list",
                QueryFailureReason.MALFORMED_RESPONSE,
            ) from err

    def audit_log(self, endpoint: str) -> AuditLog:
        return AuditLog(self.primary, endpoint)
