"""
Tests for sitemap and link-crawl URL discovery against mocked HTTP.
"""

import gzip

import httpx
import pytest

from docindex_mcp.core.exceptions import DiscoveryError
from docindex_mcp.processing.url_discovery import (
    URLDiscoverer,
    extract_links,
    parse_robots_sitemaps,
    parse_sitemap,
)
from docindex_mcp.processing.url_filters import CrawlScope

from .conftest import make_http, make_settings, sitemap_index, urlset


def page(*hrefs: str) -> str:
    links = "".join(f'<a href="{href}">link</a>' for href in hrefs)
    return f"<html><body><main><h1>Page</h1>{links}</main></body></html>"


class TestParsing:
    """Sitemap, robots.txt and anchor parsing."""

    def test_urlset(self):
        kind, locs = parse_sitemap(urlset("https://a.dev/docs/x", "https://a.dev/docs/y"))
        assert kind == "urlset"
        assert locs == ["https://a.dev/docs/x", "https://a.dev/docs/y"]

    def test_index(self):
        kind, locs = parse_sitemap(sitemap_index("https://a.dev/sitemap-1.xml"))
        assert kind == "index"
        assert locs == ["https://a.dev/sitemap-1.xml"]

    def test_text(self):
        kind, locs = parse_sitemap("https://a.dev/one\n\n# comment\nhttps://a.dev/two\n")
        assert kind == "text"
        assert locs == ["https://a.dev/one", "https://a.dev/two"]

    def test_malformed_xml_falls_back_to_regex(self):
        content = "<urlset><url><loc>https://a.dev/docs/x</loc></url><url><loc>https://a.dev/docs/y"
        kind, locs = parse_sitemap(content)
        assert kind == "urlset"
        assert locs == ["https://a.dev/docs/x"]

    def test_unknown_root(self):
        assert parse_sitemap("<html><body>hi</body></html>") == ("unknown", [])

    def test_robots_sitemaps(self):
        robots = "User-agent: *\nDisallow: /private\nSitemap: https://a.dev/custom.xml\n"
        assert parse_robots_sitemaps(robots) == ["https://a.dev/custom.xml"]

    def test_extract_links(self):
        html = (
            '<a href="/docs/intro">Intro</a>'
            '<a href="guide#setup">Guide</a>'
            '<a href="#top">Top</a>'
            '<a href="mailto:team@a.dev">Mail</a>'
            '<a href="https://other.dev/x">Other</a>'
        )
        assert extract_links(html, "https://a.dev/docs/") == [
            "https://a.dev/docs/intro",
            "https://a.dev/docs/guide",
            "https://other.dev/x",
        ]


class TestSitemapDiscovery:
    """Discovery driven by sitemaps."""

    async def test_scoped_sitemap_filters_and_falls_back(self, settings):
        routes = {
            "https://example.dev/docs/sitemap.xml": urlset(
                "https://example.dev/docs/guide",
                "https://example.dev/blog/x",
                "https://example.dev/docs/ja/guide",
            ),
        }
        async with URLDiscoverer(settings, http=make_http(routes)) as discoverer:
            urls = await discoverer.discover("https://example.dev/docs/")

        # the root page is unreachable, so the link crawl adds nothing
        assert urls == ["https://example.dev/docs/guide"]
        stats = discoverer.last_stats
        assert stats["link_crawl_used"] is True
        assert stats["link_crawl_urls"] == 0
        assert stats["rejected"] == {"out_of_scope": 1, "language": 1}

    async def test_link_crawl_fallback_includes_root_page(self, settings):
        routes = {
            "https://example.dev/docs/sitemap.xml": urlset(
                "https://example.dev/docs/guide",
                "https://example.dev/docs/ja/guide",
            ),
            "https://example.dev/docs/": page("guide", "ja/intro", "/docs/tutorial", "/blog/x"),
            "https://example.dev/docs/tutorial": page("/docs/"),
        }
        async with URLDiscoverer(settings, http=make_http(routes)) as discoverer:
            urls = await discoverer.discover("https://example.dev/docs/")

        assert urls == [
            "https://example.dev/docs",
            "https://example.dev/docs/guide",
            "https://example.dev/docs/tutorial",
        ]
        stats = discoverer.last_stats
        assert stats["link_crawl_urls"] == 2
        assert stats["rejected"] == {"language": 1}

    async def test_sitemap_index_recursion(self, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=3)
        routes = {
            "https://docs.example.com/sitemap.xml": sitemap_index(
                "https://docs.example.com/sitemap-1.xml",
                "https://docs.example.com/sitemap-2.xml",
            ),
            "https://docs.example.com/sitemap-1.xml": urlset(
                "https://docs.example.com/guide/install",
                "https://docs.example.com/guide",
                "https://docs.example.com/blog/launch",
            ),
            "https://docs.example.com/sitemap-2.xml": urlset(
                "https://docs.example.com/api/client",
                "https://docs.example.com/guide/",
            ),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        urls = await discoverer.discover("https://docs.example.com")

        assert urls == [
            "https://docs.example.com/guide",
            "https://docs.example.com/api/client",
            "https://docs.example.com/guide/install",
        ]
        assert discoverer.last_stats["link_crawl_used"] is False

    async def test_gzipped_sitemap(self, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=1)
        body = gzip.compress(urlset("https://example.org/docs/a").encode())

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == "https://example.org/sitemap.xml":
                return httpx.Response(200, content=body)
            return httpx.Response(404)

        discoverer = URLDiscoverer(settings, http=make_http(handler=handler))
        assert await discoverer.discover("https://example.org/docs") == [
            "https://example.org/docs/a"
        ]

    async def test_text_sitemap(self, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=1)
        routes = {
            "https://example.org/sitemap.txt": (
                "https://example.org/docs/b\nhttps://example.org/docs/a\n"
            ),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        assert await discoverer.discover("https://example.org/docs") == [
            "https://example.org/docs/a",
            "https://example.org/docs/b",
        ]

    async def test_robots_declared_sitemap(self, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=1)
        routes = {
            "https://example.org/robots.txt": "Sitemap: https://example.org/maps/custom.xml",
            "https://example.org/maps/custom.xml": urlset("https://example.org/docs/start"),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        assert await discoverer.discover("https://example.org/docs") == [
            "https://example.org/docs/start"
        ]

    async def test_max_pages_cap(self, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=1)
        routes = {
            "https://example.org/sitemap.xml": urlset(
                *(f"https://example.org/docs/page-{i}" for i in range(10))
            ),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        urls = await discoverer.discover("https://example.org/docs", max_pages=4)
        assert len(urls) == 4
        assert len(set(urls)) == 4


class TestLinkCrawl:
    """Breadth-first link crawl fallback."""

    async def test_link_crawl_stays_in_scope(self, settings):
        routes = {
            "https://example.org/docs": page(
                "/docs/intro",
                "/docs/api/client",
                "https://other.com/docs/x",
                "/pricing",
                "#frag",
            ),
            "https://example.org/docs/intro": page("/docs", "/docs/intro/advanced"),
            "https://example.org/docs/api/client": page(),
            "https://example.org/docs/intro/advanced": page(),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        urls = await discoverer.discover("https://example.org/docs")

        assert urls == [
            "https://example.org/docs",
            "https://example.org/docs/intro",
            "https://example.org/docs/api/client",
            "https://example.org/docs/intro/advanced",
        ]

    async def test_depth_limit(self, tmp_path):
        settings = make_settings(tmp_path, max_crawl_depth=1)
        routes = {
            "https://example.org/docs": page("/docs/a"),
            "https://example.org/docs/a": page("/docs/a/b"),
            "https://example.org/docs/a/b": page(),
        }
        discoverer = URLDiscoverer(settings, http=make_http(routes))
        scope = CrawlScope.from_root("https://example.org/docs")
        found = await discoverer.discover_from_links(scope, max_pages=10)
        assert found == ["https://example.org/docs", "https://example.org/docs/a"]

    async def test_nothing_found_raises(self, settings):
        discoverer = URLDiscoverer(settings, http=make_http({}))
        with pytest.raises(DiscoveryError, match="No pages found"):
            await discoverer.discover("https://example.org/docs")
