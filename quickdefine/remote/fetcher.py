"""
Remote dictionary client for QuickDefine (tier 3).

Fetches entries from the dictionary HTTP API with a per-attempt
deadline and a bounded number of sequential retries separated by a
fixed delay.  A 404 is a definitive answer and is never retried.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from quickdefine.exceptions import (
    NotFoundError,
    RemoteError,
    RemoteResponseError,
    RemoteTimeoutError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dictionaryapi.dev/api/v2/entries/en"


class RemoteFetcher:
    """Async HTTP client for the remote dictionary API.

    Each attempt runs under its own ``timeout_seconds`` deadline; when it
    elapses the request is cancelled, which releases its connection.
    Timeouts, transport errors and 5xx responses are retried up to
    ``retry_attempts`` more times.  404 raises :class:`NotFoundError`
    and other 4xx responses raise :class:`RemoteResponseError` without
    retrying.

    Args:
        base_url: API root; the URL-encoded key is appended after ``/``.
        timeout_seconds: Deadline for a single attempt.
        retry_attempts: Additional attempts after the first one.
        retry_delay_seconds: Fixed pause between attempts.
        client: Pre-built ``httpx.AsyncClient`` (not closed by ``aclose``).
        sleep: Awaitable delay function (injectable for tests).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 10.0,
        retry_attempts: int = 2,
        retry_delay_seconds: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._retry_attempts = max(0, retry_attempts)
        self._retry_delay = retry_delay_seconds
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
        )

    def build_url(self, key: str) -> str:
        """Return the request URL for *key*."""
        return f"{self._base_url}/{quote(key, safe='')}"

    async def fetch(self, key: str) -> Any:
        """Fetch the dictionary entry for *key*.

        Args:
            key: Normalized word or phrase.

        Returns:
            The decoded JSON body (a list of entries for the public API).

        Raises:
            NotFoundError: The API answered 404.
            RemoteResponseError: Non-404 client error or undecodable body.
            RemoteTimeoutError: Every attempt timed out (last error).
            TransientNetworkError: Every attempt failed at transport level
                or with a 5xx status (last error).
        """
        url = self.build_url(key)
        last_error: Optional[RemoteError] = None

        for attempt in range(self._retry_attempts + 1):
            try:
                return await self._attempt(url)
            except (NotFoundError, RemoteResponseError):
                raise
            except (RemoteTimeoutError, TransientNetworkError) as exc:
                last_error = exc
                if attempt < self._retry_attempts:
                    logger.warning(
                        "Remote fetch failed, retrying",
                        extra={
                            "word": key,
                            "attempt": attempt + 1,
                            "wait_seconds": self._retry_delay,
                            "error": str(exc),
                        },
                    )
                    await self._sleep(self._retry_delay)

        assert last_error is not None
        logger.warning(
            "Remote fetch gave up",
            extra={"word": key, "attempts": self._retry_attempts + 1, "error": str(last_error)},
        )
        raise last_error

    async def _attempt(self, url: str) -> Any:
        """Perform one request under a fresh deadline."""
        try:
            response = await asyncio.wait_for(
                self._client.get(url, headers={"Accept": "application/json"}),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RemoteTimeoutError(
                f"Request timed out after {self._timeout}s: {url}"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Request failed: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"No entry found: {url}")
        if status >= 500:
            raise TransientNetworkError(f"API error: {status}")
        if not response.is_success:
            raise RemoteResponseError(f"API error: {status}", status_code=status)

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteResponseError(
                f"Invalid JSON from {url}: {exc}", status_code=status
            ) from exc

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RemoteFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
