"""
Page fetching with a Firecrawl credential pool and a direct HTTP fallback.

A fetcher instance lives for one crawl job: a credential that hits a rate limit
stays exhausted until the job ends.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..clients.firecrawl_client import FirecrawlClient
from ..core.exceptions import FetchError, RateLimitedError
from ..core.http_client import AsyncHttpClient, HttpClientFactory
from ..core.logging import get_class_logger
from ..models.crawl import ContentType, FetchMethod, FetchResult
from ..settings import DocIndexSettings, get_settings


@dataclass
class ApiKeyState:
    key: str
    exhausted: bool = False
    usage: int = 0

    @property
    def masked(self) -> str:
        return f"...{self.key[-4:]}" if len(self.key) > 4 else "***"


class ApiKeyPool:
    """Round-robin over non-exhausted credentials."""

    def __init__(self, keys: list[str]) -> None:
        self.keys = [ApiKeyState(key=k) for k in keys if k]
        self._cursor = 0

    def next_key(self) -> tuple[int, ApiKeyState] | None:
        """Return (pool index, key) for the next available credential, or None."""
        available = [(i, k) for i, k in enumerate(self.keys) if not k.exhausted]
        if not available:
            return None
        choice = available[self._cursor % len(available)]
        self._cursor += 1
        return choice

    def mark_exhausted(self, index: int) -> None:
        self.keys[index].exhausted = True

    @property
    def available(self) -> int:
        return len([k for k in self.keys if not k.exhausted])

    def release(self) -> None:
        """Drop credentials from memory once the job is over."""
        self.keys.clear()
        self._cursor = 0


class PageFetcher:
    """
    Fetches raw page content, preferring Firecrawl Markdown.

    Order of attempts for one URL:
    1. Firecrawl with the next available credential; on 429 the credential is
       marked exhausted and the next one is tried.
    2. On any other Firecrawl failure, empty result, or an empty pool, a direct
       GET with a descriptive user agent.
    A non-2xx or empty direct response yields None; the caller skips the page.
    """

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        *,
        api_keys: list[str] | None = None,
        firecrawl_http: AsyncHttpClient | None = None,
        web_http: AsyncHttpClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = get_class_logger(self)
        keys = api_keys if api_keys is not None else self.settings.firecrawl_keys
        self.pool = ApiKeyPool(keys)

        self._owned: list[AsyncHttpClient] = []
        if firecrawl_http is None:
            firecrawl_http = HttpClientFactory.create_firecrawl_client(self.settings)
            self._owned.append(firecrawl_http)
        if web_http is None:
            web_http = HttpClientFactory.create_web_scraping_client(self.settings)
            self._owned.append(web_http)

        self.firecrawl = FirecrawlClient(firecrawl_http, self.settings.firecrawl_url)
        self.web_http = web_http

        self.primary_pages = 0
        self.fallback_pages = 0
        self.failed_pages = 0

    async def __aenter__(self) -> PageFetcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        self.pool.release()
        for client in self._owned:
            await client.close()

    async def fetch(self, url: str) -> FetchResult | None:
        """Fetch one page; never raises for page-level failures."""
        result = await self._fetch_primary(url)
        if result is None:
            result = await self._fetch_fallback(url)

        if result is None:
            self.failed_pages += 1
        elif result.method == FetchMethod.PRIMARY:
            self.primary_pages += 1
        else:
            self.fallback_pages += 1
        return result

    async def _fetch_primary(self, url: str) -> FetchResult | None:
        while True:
            selected = self.pool.next_key()
            if selected is None:
                if self.pool.keys:
                    self.logger.debug(f"All Firecrawl keys exhausted, direct fetch for {url}")
                return None

            index, key = selected
            try:
                page = await self.firecrawl.scrape(url, key.key, key_index=index)
            except RateLimitedError:
                self.pool.mark_exhausted(index)
                self.logger.warning(
                    f"Firecrawl key {index + 1} ({key.masked}) rate limited, "
                    f"{self.pool.available} remaining"
                )
                continue
            except FetchError as e:
                self.logger.warning(f"{e.message}; falling back to direct fetch")
                return None

            key.usage += 1
            if page.markdown.strip():
                return FetchResult(
                    url=url,
                    content=page.markdown,
                    method=FetchMethod.PRIMARY,
                    content_type=ContentType.MARKDOWN,
                )
            if page.html.strip():
                return FetchResult(
                    url=url,
                    content=page.html,
                    method=FetchMethod.PRIMARY,
                    content_type=ContentType.HTML,
                )
            self.logger.warning(f"Firecrawl returned empty content for {url}")
            return None

    async def _fetch_fallback(self, url: str) -> FetchResult | None:
        content = await self.web_http.get_text(url)
        if content is None:
            self.logger.warning(f"Direct fetch failed for {url}")
            return None
        return FetchResult(
            url=url,
            content=content,
            method=FetchMethod.FALLBACK,
            content_type=ContentType.HTML,
        )

    def get_stats(self) -> dict[str, Any]:
        """Credential pool and per-method page counters."""
        return {
            "total_keys": len(self.pool.keys),
            "exhausted_keys": len(self.pool.keys) - self.pool.available,
            "available_keys": self.pool.available,
            "usage": [
                {"key": f"Key {i + 1}", "usage": k.usage, "exhausted": k.exhausted}
                for i, k in enumerate(self.pool.keys)
            ],
            "primary_pages": self.primary_pages,
            "fallback_pages": self.fallback_pages,
            "failed_pages": self.failed_pages,
        }
