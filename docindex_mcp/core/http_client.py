"""
Shared httpx client wrapper for discovery, page fetching and the Firecrawl API.

Unlike a bare ``httpx.AsyncClient`` this wrapper opens lazily, recreates itself
after close, and retries transport errors with exponential backoff. HTTP status
codes are returned to the caller untouched; callers decide what a 404 or 429
means for them.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from ..settings import DocIndexSettings, get_settings
from .logging import get_logger

logger = get_logger(__name__)


class HttpClientConfig:
    """Configuration for HTTP clients with sensible defaults."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_connections: int = 20,
        max_keepalive_connections: int = 5,
        retries: int = 2,
        follow_redirects: bool = True,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.retries = max(1, retries)
        self.follow_redirects = follow_redirects
        self.headers = headers or {}
        self.transport = transport


class AsyncHttpClient:
    """
    Reusable async HTTP client with automatic connection management.

    Features:
    - Connection pooling and reuse
    - Automatic client recreation on close
    - Retries on timeouts and transport errors only
    - Async context manager support
    """

    def __init__(self, config: HttpClientConfig | None = None):
        self.config = config or HttpClientConfig()
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _ensure_client_open(self) -> httpx.AsyncClient:
        """Ensure HTTP client is open and recreate if needed."""
        async with self._lock:
            if self._client is None or self._client.is_closed:
                if self._client:
                    logger.debug("Recreating closed HTTP client")

                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=self.config.max_keepalive_connections,
                        max_connections=self.config.max_connections,
                    ),
                    follow_redirects=self.config.follow_redirects,
                    headers=self.config.headers,
                    transport=self.config.transport,
                )

        return self._client

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Perform any HTTP request, retrying transport failures."""
        client = await self._ensure_client_open()

        for attempt in range(self.config.retries):
            try:
                return await client.request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt == self.config.retries - 1:
                    logger.debug(
                        f"{method} {url} failed after {self.config.retries} attempts: {e}"
                    )
                    raise

                logger.debug(
                    f"{method} {url} attempt {attempt + 1} failed: {e}, retrying..."
                )
                await asyncio.sleep(0.5 * (2**attempt))

        raise RuntimeError("unreachable")  # pragma: no cover

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform GET request with retry logic."""
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform POST request with retry logic."""
        return await self.request("POST", url, **kwargs)

    async def get_text(self, url: str, **kwargs: Any) -> str | None:
        """
        GET a URL and return its body, or None on any failure.

        Non-2xx responses, empty bodies and network errors all collapse to None
        so that one broken page never aborts a crawl.
        """
        try:
            response = await self.get(url, **kwargs)
        except httpx.HTTPError as e:
            logger.debug(f"GET {url} failed: {e}")
            return None

        if not response.is_success:
            logger.debug(f"GET {url} returned {response.status_code}")
            return None

        text = response.text
        return text if text and text.strip() else None

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncHttpClient:
        await self._ensure_client_open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class HttpClientFactory:
    """Factory for creating configured HTTP clients."""

    @staticmethod
    def create_discovery_client(
        settings: DocIndexSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AsyncHttpClient:
        """Create HTTP client for sitemap probing and link crawling."""
        settings = settings or get_settings()
        config = HttpClientConfig(
            timeout=settings.sitemap_timeout,
            max_connections=20,
            max_keepalive_connections=10,
            retries=2,
            headers={
                "User-Agent": settings.user_agent,
                "Accept": "application/xml, text/xml, text/html, text/plain, */*",
            },
            transport=transport,
        )
        return AsyncHttpClient(config)

    @staticmethod
    def create_web_scraping_client(
        settings: DocIndexSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AsyncHttpClient:
        """Create HTTP client for the direct page fetch fallback."""
        settings = settings or get_settings()
        config = HttpClientConfig(
            timeout=30.0,
            max_connections=settings.page_concurrency * 2,
            max_keepalive_connections=settings.page_concurrency,
            retries=2,
            headers={
                "User-Agent": settings.user_agent,
                "Accept": "text/html,application/xhtml+xml,text/markdown;q=0.9,*/*;q=0.8",
            },
            transport=transport,
        )
        return AsyncHttpClient(config)

    @staticmethod
    def create_firecrawl_client(
        settings: DocIndexSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> AsyncHttpClient:
        """Create HTTP client for the Firecrawl scrape API."""
        settings = settings or get_settings()
        config = HttpClientConfig(
            timeout=settings.firecrawl_timeout,
            max_connections=10,
            max_keepalive_connections=5,
            retries=1,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        return AsyncHttpClient(config)
