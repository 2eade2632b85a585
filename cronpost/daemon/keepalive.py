"""Periodic self-ping.

Hosted platforms that idle a service after a period without inbound
traffic can be kept awake by requesting the service's own URL. The pinger
runs on the daemon's housekeeping scheduler and has nothing to do with job
timers.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class KeepAlivePinger:
    """Sends a GET to a fixed URL each time ping() is called."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def ping(self) -> bool:
        """Request the URL once.

        Returns:
            True if a 2xx response came back
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

        try:
            response = await self._client.get(self.url)
        except httpx.HTTPError as e:
            logger.warning(f"Keep-alive ping to {self.url} failed: {e}")
            return False

        if response.is_success:
            logger.debug(f"Keep-alive ping to {self.url}: {response.status_code}")
            return True

        logger.warning(f"Keep-alive ping to {self.url} returned {response.status_code}")
        return False

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
