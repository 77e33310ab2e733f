"""Async HTTP client with retry logic.

httpx + tenacity for calls to external collaborators.

Features:
- Async HTTP client with connection pooling
- Automatic retry with exponential backoff for idempotent reads
- Single-attempt requests where the caller owns retry decisions
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)


# Retry configuration
DEFAULT_MAX_RETRIES = 3
DEFAULT_MIN_WAIT = 1  # seconds
DEFAULT_MAX_WAIT = 10  # seconds


class AsyncHttpClient:
    """Async HTTP client with retry logic and connection pooling.

    Usage:
        async with AsyncHttpClient(base_url="https://games.example.com") as client:
            data = await client.get_json("/players/42")
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP client.

        Args:
            base_url: Prefix for relative request URLs
            timeout: Total request timeout in seconds
            connect_timeout: Connection timeout in seconds
            max_connections: Maximum concurrent connections
            max_keepalive_connections: Maximum keepalive connections
            transport: Optional custom transport (tests use httpx.MockTransport)
        """
        self._base_url = base_url
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "AsyncHttpClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            limits=self._limits,
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the underlying httpx client."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    @retry(
        stop=stop_after_attempt(DEFAULT_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=DEFAULT_MIN_WAIT, max=DEFAULT_MAX_WAIT),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def get(self, url: str, **kwargs) -> httpx.Response:
        """GET request with retry."""
        response = await self.client.get(url, **kwargs)
        response.raise_for_status()
        return response

    async def post_once(self, url: str, **kwargs) -> httpx.Response:
        """POST request without retry.

        Used where a repeated attempt is the caller's decision.
        """
        response = await self.client.post(url, **kwargs)
        response.raise_for_status()
        return response

    async def get_json(self, url: str, **kwargs) -> dict[str, Any]:
        """GET request returning JSON."""
        response = await self.get(url, **kwargs)
        return response.json()
