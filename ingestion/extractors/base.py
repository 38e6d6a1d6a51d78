"""
Shared HTTP plumbing for upstream ledger APIs.

Every request carries an explicit timeout and every failure is mapped onto
the UpstreamFetchError family. Clients never retry: a failed request fails
the job and the ingest queue decides whether it runs again.
"""

import httpx
from typing import Any, Dict, Optional
from core.exceptions import (
    UpstreamFetchError,
    UpstreamTimeoutError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class UpstreamClient:
    """
    Base class for Soroban RPC and Horizon clients.

    Attributes:
        base_url: Upstream base URL
        timeout: Per-request timeout in seconds
        source: Short name used in error context ("soroban_rpc", "horizon")
    """

    source = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send one request and map transport and status failures.

        Raises:
            UpstreamTimeoutError: Request exceeded the timeout
            RateLimitError: HTTP 429
            AuthenticationError: HTTP 401, 403
            ResourceNotFoundError: HTTP 404
            UpstreamFetchError: Any other transport or HTTP error
        """
        context = {"source": self.source, "url": url}

        try:
            response = await self.client.request(
                method, url, params=params, json=json, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Request to {self.source} timed out after {self.timeout}s",
                context={**context, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise UpstreamFetchError(
                f"Network error talking to {self.source}",
                context=context,
                original_exception=e
            )

        status = response.status_code
        if status < 400:
            return response

        context.update({"status_code": status, "response_body": response.text[:500]})

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                f"Rate limited by {self.source}",
                context=context,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if status in (401, 403):
            raise AuthenticationError(f"Authentication failed for {url}", context=context)
        if status == 404:
            raise ResourceNotFoundError(f"Resource not found: {url}", context=context)

        raise UpstreamFetchError(f"{self.source} returned HTTP {status}", context=context)

    @staticmethod
    def _json(response: httpx.Response, source: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                "Failed to parse JSON response",
                context={
                    "source": source,
                    "url": str(response.request.url),
                    "response_body": response.text[:500]
                },
                original_exception=e
            )
