"""Shared JSON-over-HTTP plumbing for upstream clients."""

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)


class JsonHttpClient:
    """Base class for upstream JSON APIs with retries and error mapping."""

    source_name = "http"

    def __init__(
        self,
        base_url: str,
        session: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: API base URL
            session: Optional shared httpx client
            timeout: Per-request timeout in seconds
            max_attempts: Attempts on network errors and timeouts
            headers: Headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}

        self.session = session or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self._owns_session = session is None

        # Retry configuration
        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    async def close(self) -> None:
        if self._owns_session:
            await self.session.aclose()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        method: str = "GET",
        json_body: Any = None,
    ) -> Any:
        """Make HTTP request with retries.

        Args:
            endpoint: API endpoint path or absolute URL
            params: Query parameters
            method: HTTP method
            json_body: Optional JSON request body

        Returns:
            Decoded JSON response

        Raises:
            UpstreamUnavailable: On HTTP errors, exhausted retries or bad JSON
        """
        url = self._url(endpoint)

        try:
            async for attempt in self.retry_config.copy():
                with attempt:
                    response = await self.session.request(
                        method,
                        url,
                        params=params,
                        json=json_body,
                        headers=self.headers,
                        timeout=self.timeout,
                    )
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "HTTP error from upstream",
                source=self.source_name,
                endpoint=endpoint,
                status_code=e.response.status_code,
            )
            raise UpstreamUnavailable(
                f"{self.source_name} returned HTTP {e.response.status_code}",
                source=self.source_name,
                details={"endpoint": endpoint, "status_code": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Upstream request failed",
                source=self.source_name,
                endpoint=endpoint,
                error=str(e),
            )
            raise UpstreamUnavailable(
                f"{self.source_name} request failed: {e}",
                source=self.source_name,
                details={"endpoint": endpoint},
            ) from e

        raise UpstreamUnavailable(
            f"{self.source_name} request gave no response", source=self.source_name
        )
