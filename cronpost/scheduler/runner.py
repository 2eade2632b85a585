"""Execution runner for scheduled HTTP jobs.

The ExecutionRunner performs the outbound POST for one firing of a job,
times it, and classifies the result. It never raises: every failure is
folded into an ExecutionOutcome so the caller can always log a record.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import httpx

from cronpost import __app_name__, __version__
from cronpost.scheduler.exceptions import TransportError
from cronpost.scheduler.models import Clock, ExecutionOutcome, ExecutionStatus, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = f"{__app_name__}/{__version__}"


class ExecutionRunner:
    """Sends the HTTP request for a job firing.

    One httpx.AsyncClient is shared by all firings and created on first
    use. A response of any status counts as success unless
    ``http_errors_as_failures`` is set, in which case non-2xx responses
    are recorded as errors.

    Example:
        runner = ExecutionRunner(timeout=10.0)
        outcome = await runner.execute("https://example.com/hook", body='{"a": 1}')
        await runner.aclose()
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        http_errors_as_failures: bool = False,
        max_connections: int = 100,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize the runner.

        Args:
            timeout: Upper bound in seconds for one request, end to end
            http_errors_as_failures: Record non-2xx responses as errors
            max_connections: Connection pool size of the shared client
            user_agent: User-Agent header value
            client: Pre-built client to use instead of creating one
            transport: Transport for the created client (tests use MockTransport)
            clock: Source of completion timestamps
        """
        self._timeout = timeout
        self._http_errors_as_failures = http_errors_as_failures
        self._max_connections = max_connections
        self._user_agent = user_agent
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self._clock = clock or utc_now

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=self._max_connections),
                headers={"User-Agent": self._user_agent},
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def build_headers(secret: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["Authorization"] = f"Bearer {secret}"
        return headers

    async def execute(
        self,
        url: str,
        body: Optional[str | bytes] = None,
        secret: Optional[str] = None,
    ) -> ExecutionOutcome:
        """POST to ``url`` once and describe what happened.

        Args:
            url: Target URL
            body: Payload sent verbatim; omitted entirely when empty
            secret: Bearer credential; no Authorization header when empty

        Returns:
            ExecutionOutcome with status, response code and duration
        """
        started = time.monotonic()
        try:
            response = await self._send(url, body, secret)
        except TransportError as e:
            return ExecutionOutcome(
                status=ExecutionStatus.ERROR,
                duration_ms=_elapsed_ms(started),
                completed_at=self._clock(),
                error_message=e.message,
            )
        except Exception as e:
            # e.g. an invalid URL, still recorded as a failed firing
            logger.exception(f"Unexpected error calling {url}")
            return ExecutionOutcome(
                status=ExecutionStatus.ERROR,
                duration_ms=_elapsed_ms(started),
                completed_at=self._clock(),
                error_message=f"{e.__class__.__name__}: {e}",
            )

        duration_ms = _elapsed_ms(started)
        if self._http_errors_as_failures and not response.is_success:
            return ExecutionOutcome(
                status=ExecutionStatus.ERROR,
                duration_ms=duration_ms,
                completed_at=self._clock(),
                response_code=response.status_code,
                error_message=f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        return ExecutionOutcome(
            status=ExecutionStatus.SUCCESS,
            duration_ms=duration_ms,
            completed_at=self._clock(),
            response_code=response.status_code,
        )

    async def _send(
        self,
        url: str,
        body: Optional[str | bytes],
        secret: Optional[str],
    ) -> httpx.Response:
        """Send the request, translating transport failures to TransportError."""
        client = self._get_client()
        request = client.build_request(
            "POST",
            url,
            headers=self.build_headers(secret),
            content=body if body else None,
        )

        try:
            # httpx timeouts are per phase, the outer deadline bounds the whole call
            return await asyncio.wait_for(client.send(request), timeout=self._timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(
                f"Request timed out after {self._timeout:g}s", url, cause=e
            ) from e
        except httpx.ConnectError as e:
            raise TransportError(f"Connection failed: {_describe(e)}", url, cause=e) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"{e.__class__.__name__}: {_describe(e)}", url, cause=e
            ) from e

    async def aclose(self) -> None:
        """Close the shared client if this runner created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ExecutionRunner":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _describe(error: Exception) -> str:
    return str(error) or error.__class__.__name__
