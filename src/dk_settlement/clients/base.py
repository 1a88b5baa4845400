"""Base client for public energy market data APIs.

Provides common functionality:
- Async HTTP client with connection pooling
- Retries with exponential backoff on timeouts, network errors and 429s
- Request/response logging
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None, response: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded."""

    pass


class BaseClient(ABC):
    """Base class for market data API clients.

    Example:
        async with SomeClient() as client:
            data = await client.get("dataset/Elspotprices", params={"limit": 5})
    """

    user_agent = "dk-settlement/0.1.0"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the base client.

        Args:
            base_url: Base URL for the API
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used to stub the network in tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": "application/json", "User-Agent": self.user_agent},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(self, method: str, endpoint: str, params: dict[str, Any] | None, **kwargs: Any) -> httpx.Response:
        client = await self._ensure_client()

        request_time = datetime.now(UTC)
        logger.info(f"API Request: {method} {self.base_url}/{endpoint.lstrip('/')} params={params}")

        response = await client.request(method, endpoint, params=params, **kwargs)

        logger.info(
            f"API Response: {response.status_code} in "
            f"{(datetime.now(UTC) - request_time).total_seconds():.2f}s"
        )

        if response.status_code == 429:
            raise RateLimitError("Rate limit exceeded", status_code=429, response=response.text)
        return response

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make an HTTP request with retry logic.

        Returns:
            JSON response as dictionary, with non-integer numbers as Decimal

        Raises:
            APIError: If the request fails
            RateLimitError: If rate limit is still exceeded after retries
        """
        try:
            response = await self._send(method, endpoint, params, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout: {endpoint}")
            raise APIError(f"Request timeout: {e}") from e
        except httpx.NetworkError as e:
            logger.error(f"Network error: {endpoint} - {e}")
            raise APIError(f"Network error: {e}") from e

        if response.status_code >= 400:
            raise APIError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                response=response.text,
            )

        return json.loads(response.text, parse_float=Decimal)

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make a GET request."""
        return await self._request("GET", endpoint, params=params, **kwargs)

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the API is healthy and accessible."""
        pass
