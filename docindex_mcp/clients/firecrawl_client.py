"""
Async client for the Firecrawl scrape API.

One call scrapes one page with one API key. Credential rotation lives in the
page fetcher; this client only reports what the API said.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from ..core.exceptions import FetchError, RateLimitedError
from ..core.http_client import AsyncHttpClient


@dataclass
class FirecrawlPage:
    markdown: str = ""
    html: str = ""
    title: str | None = None


class FirecrawlClient:
    """Thin wrapper over ``POST /v0/scrape``."""

    def __init__(self, http: AsyncHttpClient, endpoint: str) -> None:
        self.http = http
        self.endpoint = endpoint

    async def scrape(self, url: str, api_key: str, key_index: int = 0) -> FirecrawlPage:
        """
        Scrape one page.

        Args:
            url: Page to scrape
            api_key: Bearer credential to use
            key_index: Position of the credential in the pool, for error reporting

        Returns:
            Markdown and HTML representations (either may be empty)

        Raises:
            RateLimitedError: the API answered 429 for this credential
            FetchError: any other transport, status or payload failure
        """
        body = {
            "url": url,
            "formats": ["markdown", "html"],
            "extractorOptions": {"mode": "markdown", "includeRawHtml": False},
        }
        try:
            response = await self.http.post(
                self.endpoint,
                json=body,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Firecrawl request failed for {url}: {e}", e) from e

        if response.status_code == 429:
            raise RateLimitedError(
                f"Firecrawl rate limit hit for key {key_index + 1}", key_index
            )
        if not response.is_success:
            raise FetchError(f"Firecrawl returned {response.status_code} for {url}")

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise FetchError(f"Firecrawl returned invalid JSON for {url}", e) from e

        if not isinstance(data, dict):
            raise FetchError(f"Firecrawl returned an unexpected payload for {url}")
        page = data.get("data")
        if not data.get("success") or not isinstance(page, dict):
            raise FetchError(f"Firecrawl failed for {url}: {data.get('error')}")

        metadata = page.get("metadata") or {}
        return FirecrawlPage(
            markdown=page.get("markdown") or "",
            html=page.get("html") or page.get("content") or "",
            title=metadata.get("title") if isinstance(metadata, dict) else None,
        )
