import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from ..components.decorators import timeboxed
from ..components.errors import QueryFailureReason, SourceUnavailable
from ..components.logs import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


class JSONClient:
    """
    Minimal JSON-over-HTTP client shared by the HTTP based sources. Every failure is
    translated into a SourceUnavailable carrying the reason, so the engine never sees an
    aiohttp exception.
    """

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = 30,
        auth: Optional[aiohttp.BasicAuth] = None,
        headers: Optional[dict] = None,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.auth = auth
        self.headers = headers or {}

    def full_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.url}/{path.lstrip('/')}"

    async def _execute(self, url: str, params: Optional[dict]) -> tuple[int, str]:
        async with (
            aiohttp.ClientSession(auth=self.auth, headers=self.headers) as session,
            session.get(url, params=params) as response,
        ):
            return response.status, await response.text()

    @timeboxed
    async def get_json(self, path: str, params: Optional[dict] = None) -> Any:
        """
        Raises:
            SourceUnavailable: On connection, authentication, status or decoding failure.
        """
        url = self.full_url(path)

        try:
            status, body = await self._execute(url, params)
        except aiohttp.ClientError as err:
            logger.warning("Request failed", {"url": url, "error": str(err)})
            raise SourceUnavailable(
                f"Unable to reach {url}: {err}", QueryFailureReason.NETWORK
            ) from err
        except asyncio.TimeoutError as err:
            raise SourceUnavailable(
                f"Request to {url} timed out", QueryFailureReason.TIMEOUT
            ) from err

        if status in (401, 403):
            raise SourceUnavailable(
                f"Access to {url} was denied (HTTP {status})", QueryFailureReason.AUTH
            )
        if status >= 400:
            raise SourceUnavailable(
                f"{url} returned HTTP {status}", QueryFailureReason.NETWORK
            )

        try:
            return json.loads(body)
        except ValueError as err:
            logger.warning("Malformed response", {"url": url, "error": str(err)})
            raise SourceUnavailable(
                f"{url} did not return valid JSON", QueryFailureReason.MALFORMED_RESPONSE
            ) from err
