"""Async HTTP client for a PostgREST endpoint.

Provides API-key authenticated requests with automatic retry logic
using exponential backoff with jitter.

Retry Strategy:
- Exponential backoff: 0.5s, 1s, 2s, 4s, 8s (capped)
- Jitter: ±50% randomization to prevent thundering herd
- Max retries: 3 (configurable)
- Retryable: connect errors (any method); timeouts and 502/503/504
  (idempotent methods only)
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from editorcore.core.errors import NetworkFailure, RequestTimeout
from editorcore.settings import StoreSettings

logger = logging.getLogger(__name__)

# Retryable HTTP status codes (server-side transient errors)
RETRYABLE_STATUS_CODES = {502, 503, 504}

# A repeated PATCH bumps version twice, a repeated POST inserts twice
IDEMPOTENT_METHODS = {"GET", "HEAD", "DELETE"}


def _calculate_backoff(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
) -> float:
    """Calculate delay with exponential backoff and jitter.

    Formula: min(max_delay, base_delay * 2^attempt) * random(0.5, 1.5)

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Initial delay in seconds (default: 0.5)
        max_delay: Maximum delay cap in seconds (default: 8.0)

    Returns:
        Delay in seconds with jitter applied
    """
    delay = min(max_delay, base_delay * (2**attempt))
    jitter = random.uniform(0.5, 1.5)
    return delay * jitter


class PostgRESTClient:
    """Low-level async HTTP client for a PostgREST API.

    Features:
    - ``apikey`` and bearer headers on every request
    - Exponential backoff with jitter for transient errors
    - Connection pooling via httpx
    - Async context manager support

    Transport failures that survive every retry are raised as
    NetworkFailure or RequestTimeout; HTTP error responses are returned
    for the caller to map.

    Usage:
        async with PostgRESTClient("https://db.example.com/rest/v1", api_key) as client:
            response = await client.get("/articles", params=[("select", "*")])
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            base_url: PostgREST root (e.g. "https://db.example.com/rest/v1")
            api_key: Project API key, sent as ``apikey``
            access_token: User JWT for the bearer header (defaults to api_key)
            timeout: Request timeout in seconds (default: 10.0)
            max_retries: Maximum retry attempts for transient errors (default: 3)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            sleep: Backoff sleep coroutine
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: StoreSettings, **kwargs: Any) -> "PostgRESTClient":
        if not settings.postgrest_url:
            raise ValueError("EDITORCORE_POSTGREST_URL is not configured")
        return cls(
            settings.postgrest_url,
            api_key=settings.postgrest_api_key,
            timeout=settings.timeout,
            max_retries=settings.retry_count,
            **kwargs,
        )

    def set_access_token(self, token: str | None) -> None:
        """Switch the bearer token (e.g. after the user signs in)."""
        self._access_token = token

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=10,
                ),
            )
        return self._client

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
        token = self._access_token or self._api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Make a request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            path: Path under the base URL (e.g. "/articles")
            params: Query parameters as ordered pairs
            json: JSON body for POST/PATCH
            headers: Extra headers (e.g. Prefer)

        Returns:
            The final response, whatever its status

        Raises:
            NetworkFailure: Connection failed after all retries
            RequestTimeout: Request timed out after all retries
        """
        method = method.upper()
        client = self._get_client()
        request_headers = self._headers(headers)
        idempotent = method in IDEMPOTENT_METHODS

        for attempt in range(self._max_retries + 1):
            try:
                response = await client.request(
                    method, path, params=params, json=json, headers=request_headers
                )
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                retryable = isinstance(e, httpx.ConnectError) or idempotent
                if retryable and attempt < self._max_retries:
                    delay = _calculate_backoff(attempt)
                    logger.warning(
                        "[POSTGREST] Retryable error for %s %s: %s, retry %d/%d after %.1fs",
                        method,
                        path,
                        type(e).__name__,
                        attempt + 1,
                        self._max_retries,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error("[POSTGREST] Request failed for %s %s: %s", method, path, e)
                if isinstance(e, httpx.TimeoutException):
                    raise RequestTimeout(f"Request timed out: {method} {path}", status=408) from e
                raise NetworkFailure(f"Connection failed: {method} {path}: {e}") from e
            except httpx.RequestError as e:
                # Non-retryable request exception
                logger.error("[POSTGREST] Request failed (non-retryable): %s", e)
                raise NetworkFailure(f"Request failed: {method} {path}: {e}") from e

            if response.status_code in RETRYABLE_STATUS_CODES and idempotent:
                if attempt < self._max_retries:
                    delay = _calculate_backoff(attempt)
                    logger.warning(
                        "[POSTGREST] Retryable HTTP %d for %s %s, retry %d/%d after %.1fs",
                        response.status_code,
                        method,
                        path,
                        attempt + 1,
                        self._max_retries,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error(
                    "[POSTGREST] Max retries exceeded for %s %s (HTTP %d)",
                    method,
                    path,
                    response.status_code,
                )
            return response

        # Unreachable: the loop always returns or raises on its last attempt
        raise NetworkFailure(f"Request failed: {method} {path}")

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", path, **kwargs)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PostgRESTClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
