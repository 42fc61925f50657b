"""
Tests for the Firecrawl credential pool and the direct-fetch fallback.
"""

import json

import httpx

from docindex_mcp.models.crawl import ContentType, FetchMethod
from docindex_mcp.processing.page_fetcher import ApiKeyPool, PageFetcher

from .conftest import make_http

PAGE_URL = "https://example.dev/docs/guide"
PAGE_HTML = "<html><body><h1>Guide</h1><p>Hello</p></body></html>"


class FirecrawlStub:
    """Scrape endpoint whose answer depends on the bearer key."""

    def __init__(self, responses: dict[str, httpx.Response]):
        self.responses = responses
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.headers["Authorization"].removeprefix("Bearer ")
        self.calls.append(key)
        body = json.loads(request.content)
        assert body["url"] == PAGE_URL
        return self.responses[key]


def scraped(markdown: str = "# Guide\n\nHello", html: str = "") -> httpx.Response:
    return httpx.Response(
        200,
        json={"success": True, "data": {"markdown": markdown, "html": html, "metadata": {}}},
    )


def make_fetcher(settings, keys, stub, web_routes=None) -> PageFetcher:
    return PageFetcher(
        settings,
        api_keys=keys,
        firecrawl_http=make_http(handler=stub),
        web_http=make_http(web_routes or {}),
    )


class TestApiKeyPool:
    def test_round_robin_skips_exhausted(self):
        pool = ApiKeyPool(["a", "b", "c"])
        assert [pool.next_key()[1].key for _ in range(3)] == ["a", "b", "c"]
        pool.mark_exhausted(1)
        picked = {pool.next_key()[1].key for _ in range(4)}
        assert picked == {"a", "c"}
        assert pool.available == 2

    def test_empty_pool(self):
        pool = ApiKeyPool([])
        assert pool.next_key() is None
        assert pool.available == 0


class TestPageFetcher:
    """Primary fetch, rotation and fallback."""

    async def test_primary_markdown(self, settings):
        stub = FirecrawlStub({"key-aaaa1": scraped()})
        async with make_fetcher(settings, ["key-aaaa1"], stub) as fetcher:
            result = await fetcher.fetch(PAGE_URL)
            stats = fetcher.get_stats()

        assert result.method == FetchMethod.PRIMARY
        assert result.content_type == ContentType.MARKDOWN
        assert result.content.startswith("# Guide")
        assert stats["primary_pages"] == 1
        assert stats["usage"][0]["usage"] == 1

    async def test_primary_html_when_markdown_empty(self, settings):
        stub = FirecrawlStub({"k1-key": scraped(markdown="", html=PAGE_HTML)})
        fetcher = make_fetcher(settings, ["k1-key"], stub)
        result = await fetcher.fetch(PAGE_URL)
        assert result.method == FetchMethod.PRIMARY
        assert result.content_type == ContentType.HTML

    async def test_rate_limited_key_rotates(self, settings):
        stub = FirecrawlStub(
            {
                "key-aaaa1": httpx.Response(429, json={"error": "rate limited"}),
                "key-bbbb2": scraped(),
            }
        )
        fetcher = make_fetcher(settings, ["key-aaaa1", "key-bbbb2"], stub)

        first = await fetcher.fetch(PAGE_URL)
        second = await fetcher.fetch(PAGE_URL)

        assert first.method == FetchMethod.PRIMARY
        assert second.method == FetchMethod.PRIMARY
        # the exhausted key is never retried within the job
        assert stub.calls == ["key-aaaa1", "key-bbbb2", "key-bbbb2"]
        stats = fetcher.get_stats()
        assert stats["exhausted_keys"] == 1
        assert stats["available_keys"] == 1
        assert stats["usage"][1] == {"key": "Key 2", "usage": 2, "exhausted": False}

    async def test_all_keys_exhausted_falls_back(self, settings):
        stub = FirecrawlStub(
            {
                "key-aaaa1": httpx.Response(429),
                "key-bbbb2": httpx.Response(429),
            }
        )
        fetcher = make_fetcher(
            settings, ["key-aaaa1", "key-bbbb2"], stub, {PAGE_URL: PAGE_HTML}
        )
        result = await fetcher.fetch(PAGE_URL)

        assert result.method == FetchMethod.FALLBACK
        assert result.content_type == ContentType.HTML
        assert result.content == PAGE_HTML
        assert fetcher.get_stats()["exhausted_keys"] == 2

    async def test_primary_error_falls_back(self, settings):
        stub = FirecrawlStub(
            {"key-aaaa1": httpx.Response(200, json={"success": False, "error": "blocked"})}
        )
        fetcher = make_fetcher(settings, ["key-aaaa1"], stub, {PAGE_URL: PAGE_HTML})
        result = await fetcher.fetch(PAGE_URL)
        assert result.method == FetchMethod.FALLBACK
        # a non-rate-limit failure does not exhaust the key
        assert fetcher.get_stats()["exhausted_keys"] == 0

    async def test_empty_pool_goes_direct(self, settings):
        stub = FirecrawlStub({})
        fetcher = make_fetcher(settings, [], stub, {PAGE_URL: PAGE_HTML})
        result = await fetcher.fetch(PAGE_URL)
        assert result.method == FetchMethod.FALLBACK
        assert stub.calls == []

    async def test_unreachable_page_returns_none(self, settings):
        stub = FirecrawlStub({"key-aaaa1": httpx.Response(500)})
        fetcher = make_fetcher(settings, ["key-aaaa1"], stub)
        assert await fetcher.fetch(PAGE_URL) is None
        assert fetcher.get_stats()["failed_pages"] == 1
