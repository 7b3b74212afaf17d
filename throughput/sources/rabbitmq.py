import logging
from typing import Mapping, Optional
from urllib.parse import quote

import aiohttp

from ..components.errors import InvalidEnvironment, SourceUnavailable
from ..components.logs import configure_logging
from .http import JSONClient
from .protocols import BaseCounterSource

configure_logging()
logger = logging.getLogger(__name__)

PAGE_SIZE = 500


class RabbitMQSource(BaseCounterSource):
    """
    Acknowledged message counts from the RabbitMQ management API. The counters live in the
    broker's memory and restart with the node, hence `volatile`.
    """

    volatile = True
    transport = "RabbitMQ"

    def __init__(self, client: JSONClient, vhost: Optional[str] = None, name: str = "rabbitmq"):
        super().__init__()
        self.client = client
        self.vhost = vhost
        self.name = name
        self.cluster_name: Optional[str] = None
        self.version: Optional[str] = None
        self._initialized = False

    @classmethod
    def from_params(cls, params, timeout: Optional[float] = 30) -> "RabbitMQSource":
        auth = None
        if params.username:
            auth = aiohttp.BasicAuth(params.username, params.password or "")
        return cls(JSONClient(params.url, timeout, auth), params.vhost)

    @property
    def report_method(self) -> str:
        return f"RabbitMQ Admin API {self.version or 'Unknown'} on cluster {self.cluster_name}"

    async def initialize(self):
        """
        Check that the broker collects statistics and resolve the virtual host to measure.

        Raises:
            InvalidEnvironment: If statistics are disabled or the vhost cannot be resolved.
        """
        overview = await self.client.get_json("/api/overview")
        if not isinstance(overview, dict):
            raise InvalidEnvironment(f"{self.client.url}/api/overview returned an unexpected body")

        if overview.get("disable_stats"):
            raise InvalidEnvironment(
                "The RabbitMQ broker is configured with `management.disable_stats = true` and "
                + "queue statistics cannot be collected."
            )

        self.cluster_name = overview.get("cluster_name") or "Unknown"
        self.version = overview.get("management_version") or overview.get("rabbitmq_version")

        body = await self.client.get_json("/api/vhosts")
        if not isinstance(body, list):
            raise InvalidEnvironment(f"{self.client.url}/api/vhosts returned an unexpected body")

        vhosts = [item.get("name") for item in body]
        if not vhosts:
            raise InvalidEnvironment(f"The server at {self.client.url} has no vhosts.")

        if self.vhost is None:
            if len(vhosts) > 1:
                raise InvalidEnvironment(
                    f"The server at {self.client.url} has multiple vhosts, set the vhost to "
                    + "measure in the configuration."
                )
            self.vhost = vhosts[0]
        elif self.vhost not in vhosts:
            raise InvalidEnvironment(f"Could not find the vhost named '{self.vhost}'.")

        logger.info(
            "Connected to RabbitMQ",
            {"cluster": self.cluster_name, "version": self.version, "vhost": self.vhost},
        )
        self._initialized = True

    async def _get_page(self, page: int) -> tuple[list[dict], bool]:
        path = f"/api/queues/{quote(self.vhost, safe='')}"
        params = {
            "page": page,
            "page_size": PAGE_SIZE,
            "name": "",
            "use_regex": "false",
            "pagination": "true",
        }
        body = await self.client.get_json(path, params)

        if isinstance(body, list):
            # older brokers ignore pagination and return every queue at once
            return body, False

        if isinstance(body, dict):
            items = body.get("items") or []
            return items, body.get("page_count", 0) > body.get("page", 0)

        raise SourceUnavailable(f"Unexpected queue list of type {type(body).__name__}")

    async def get_snapshot(self) -> Mapping[str, Optional[int]]:
        if not self._initialized:
            await self.initialize()

        counters: dict[str, Optional[int]] = {}
        page = 1
        while True:
            items, more = await self._get_page(page)
            for item in items:
                name = item.get("name")
                if name is None or name in counters:
                    continue
                stats = item.get("message_stats") or {}
                ack = stats.get("ack")
                counters[name] = int(ack) if ack is not None else None

            if not more:
                break
            page += 1

        return counters
