"""Feed fetcher for sanctionsync.

Downloads raw feed documents over HTTP(S). The fetcher does not look at
the content and does not retry: a failed download is reported as a
TransportError and the retry decision is left to the scheduler.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, Field

from sanctionsync.exceptions import TransportError

log = structlog.get_logger(__name__)


class FetcherConfig(BaseModel):
    """Configuration for the feed fetcher."""

    timeout: float = Field(default=120.0, description="Request timeout in seconds")
    user_agent: str = Field(default="sanctionsync/0.1.0")
    follow_redirects: bool = True


class FeedFetcher:
    """Async fetcher returning raw feed bytes.

    Example:
        async with FeedFetcher(FetcherConfig()) as fetcher:
            raw = await fetcher.fetch("https://www.treasury.gov/ofac/downloads/sdn.xml")
    """

    def __init__(self, config: FetcherConfig | None = None) -> None:
        self.config = config or FetcherConfig()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self.config.user_agent},
                timeout=httpx.Timeout(self.config.timeout),
                follow_redirects=self.config.follow_redirects,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> FeedFetcher:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    async def fetch(self, url: str) -> bytes:
        """Download url and return the response body unchanged.

        Raises:
            TransportError: on network failure or a non-2xx status.
        """
        client = await self._get_client()

        try:
            log.debug("Fetching feed", url=url)
            response = await client.get(url)
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            raise TransportError(
                "Feed request failed",
                url=url,
                status_code=e.response.status_code,
            ) from e

        except httpx.RequestError as e:
            raise TransportError(
                "Failed to connect to feed",
                url=url,
                detail=str(e),
            ) from e

        content = response.content
        log.info("Feed fetched", url=url, bytes=len(content))
        return content
