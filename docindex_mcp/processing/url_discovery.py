"""
URL discovery for documentation sites.

Discovers in-scope page URLs from sitemaps (XML, sitemap indexes, plain text and
robots.txt declarations) and falls back to a breadth-first link crawl from the
root page when sitemaps yield too little.
"""

from __future__ import annotations

import asyncio
import gzip
import re
import xml.etree.ElementTree as ET
from typing import Any
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from ..constants import MAX_NESTED_SITEMAPS, SITEMAP_PATHS
from ..core.async_utils import gather_bounded
from ..core.exceptions import DiscoveryError
from ..core.http_client import AsyncHttpClient, HttpClientFactory
from ..core.logging import get_class_logger
from ..core.utils import normalize_url
from ..settings import DocIndexSettings, get_settings
from .url_filters import CrawlScope, looks_like_docs, reject_reason, sort_urls

_LOC_RE = re.compile(r"<loc[^>]*>\s*([^<]+?)\s*</loc>", re.IGNORECASE)
_MAX_SITEMAP_DEPTH = 3


class URLDiscoverer:
    """Produces an ordered, deduplicated, in-scope list of documentation page URLs."""

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        http: AsyncHttpClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = get_class_logger(self)
        self._owns_http = http is None
        self.http = http or HttpClientFactory.create_discovery_client(self.settings)
        self.last_stats: dict[str, Any] = {}

    async def __aenter__(self) -> URLDiscoverer:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http:
            await self.http.close()

    async def discover(self, root_url: str, max_pages: int | None = None) -> list[str]:
        """
        Discover candidate pages for a documentation root.

        Args:
            root_url: Validated root URL of the documentation
            max_pages: Cap on returned URLs (defaults to settings.max_pages)

        Returns:
            Normalized URLs sorted by path depth, then lexicographically

        Raises:
            DiscoveryError: when neither sitemaps nor link crawling found a page
        """
        max_pages = max_pages or self.settings.max_pages
        scope = CrawlScope.from_root(root_url)
        stats: dict[str, Any] = {
            "root_url": root_url,
            "scope": scope.root_url,
            "max_pages": max_pages,
            "sitemap_urls": 0,
            "sitemap_kept": 0,
            "link_crawl_used": False,
            "link_crawl_urls": 0,
            "rejected": {},
            "final_count": 0,
        }
        self.last_stats = stats
        final_urls: list[str] = []

        self.logger.info(
            f"🔍 Starting URL discovery for {scope.root_url} (max: {max_pages})"
        )

        try:
            sitemap_urls = await self.discover_from_sitemaps(scope)
            stats["sitemap_urls"] = len(sitemap_urls)
            kept = self.filter_urls(sitemap_urls, scope, stats["rejected"])
            stats["sitemap_kept"] = len(kept)

            if len(kept) < self.settings.sitemap_min_urls:
                self.logger.info(
                    f"🗺️ Sitemaps yielded {len(kept)} URLs, falling back to link crawling"
                )
                stats["link_crawl_used"] = True
                crawled = await self.discover_from_links(scope, max_pages, root_url)
                stats["link_crawl_urls"] = len(crawled)
                kept = self.filter_urls(kept + crawled, scope, stats["rejected"])

            final_urls = sort_urls(kept)[:max_pages]
            stats["final_count"] = len(final_urls)
        finally:
            self._log_discovery_summary(stats)

        if not final_urls:
            raise DiscoveryError(f"No pages found for {root_url}")

        self.logger.info(f"🎉 Discovery completed: {len(final_urls)} URLs selected")
        return final_urls

    def filter_urls(
        self,
        urls: list[str],
        scope: CrawlScope,
        rejected: dict[str, int] | None = None,
    ) -> list[str]:
        """Normalize, filter and deduplicate URLs, preserving first-seen order."""
        seen: set[str] = set()
        kept: list[str] = []
        for raw in urls:
            url = normalize_url(raw)
            if url in seen:
                continue
            seen.add(url)
            reason = reject_reason(url, scope)
            if reason is None:
                kept.append(url)
            elif rejected is not None:
                rejected[reason.value] = rejected.get(reason.value, 0) + 1
        return kept

    # ------------------------------------------------------------------
    # Sitemaps
    # ------------------------------------------------------------------

    def sitemap_candidates(self, scope: CrawlScope) -> list[str]:
        """Conventional sitemap locations, scope-specific ones first."""
        candidates: list[str] = []
        if scope.path_prefix:
            for name in ("sitemap.xml", "sitemap_index.xml"):
                candidates.append(f"{scope.origin}{scope.path_prefix}/{name}")
        for path in SITEMAP_PATHS:
            url = urljoin(scope.origin + "/", path)
            if url not in candidates:
                candidates.append(url)
        return candidates

    async def discover_from_sitemaps(self, scope: CrawlScope) -> list[str]:
        """Union of page URLs from every reachable sitemap for the scope's origin."""
        candidates = self.sitemap_candidates(scope)
        if self.settings.check_robots_sitemaps:
            for url in await self._discover_robots_sitemaps(scope.origin):
                if url not in candidates:
                    candidates.append(url)

        visited: set[str] = set()
        results = await asyncio.gather(
            *(self._fetch_sitemap(url, visited, depth=0) for url in candidates),
            return_exceptions=True,
        )

        urls: list[str] = []
        for candidate, result in zip(candidates, results, strict=True):
            if isinstance(result, BaseException):
                self.logger.warning(f"❌ Sitemap {candidate} failed: {result}")
                continue
            if result:
                self.logger.info(f"✅ Found {len(result)} URLs in {candidate}")
                urls.extend(result)
        return urls

    async def _discover_robots_sitemaps(self, origin: str) -> list[str]:
        text = await self.http.get_text(f"{origin}/robots.txt")
        if not text:
            return []
        return parse_robots_sitemaps(text)

    async def _fetch_sitemap(self, url: str, visited: set[str], depth: int) -> list[str]:
        """Fetch one sitemap, recursing into sitemap indexes."""
        if url in visited or depth > _MAX_SITEMAP_DEPTH:
            return []
        visited.add(url)

        content = await self._fetch_sitemap_body(url)
        if not content:
            return []

        kind, locs = parse_sitemap(content)
        if kind != "index":
            return locs

        children = [loc for loc in locs if loc not in visited][:MAX_NESTED_SITEMAPS]
        self.logger.debug(f"Sitemap index {url} lists {len(children)} sitemaps")
        nested = await gather_bounded(
            children,
            lambda _i, child: self._fetch_sitemap(child, visited, depth + 1),
            max_concurrency=5,
        )
        return [page for pages in nested for page in pages]

    async def _fetch_sitemap_body(self, url: str) -> str | None:
        try:
            response = await self.http.get(url)
        except httpx.HTTPError as e:
            self.logger.debug(f"Failed to fetch sitemap {url}: {e}")
            return None
        if not response.is_success:
            return None

        raw = response.content
        if raw[:2] == b"\x1f\x8b":
            try:
                raw = gzip.decompress(raw)
            except OSError as e:
                self.logger.warning(f"Failed to decompress sitemap {url}: {e}")
                return None
        text = raw.decode(response.encoding or "utf-8", errors="replace")
        return text if text.strip() else None

    # ------------------------------------------------------------------
    # Link crawling fallback
    # ------------------------------------------------------------------

    async def discover_from_links(
        self, scope: CrawlScope, max_pages: int, start_url: str | None = None
    ) -> list[str]:
        """
        Breadth-first link crawl from the scope root.

        Each BFS level is fetched with bounded concurrency; a page that fails to
        load is skipped. Pages are fetched by their absolute href so relative
        links resolve the way a browser would; seen-checks use normalized URLs.
        Root crawls only follow documentation-looking links.
        """
        start = urldefrag(start_url or scope.root_url)[0]
        seen: set[str] = {normalize_url(start)}
        frontier: list[str] = [start]
        found: list[str] = []
        depth = 0

        while frontier and len(found) < max_pages:
            bodies = await gather_bounded(
                frontier,
                lambda _i, url: self.http.get_text(url),
                max_concurrency=self.settings.page_concurrency,
            )

            next_frontier: list[str] = []
            for url, html in zip(frontier, bodies, strict=True):
                if html is None:
                    self.logger.debug(f"Skipping unreachable page {url}")
                    continue
                if len(found) >= max_pages:
                    break
                found.append(normalize_url(url))
                if depth >= self.settings.max_crawl_depth:
                    continue
                for link in extract_links(html, url):
                    key = normalize_url(link)
                    if key in seen:
                        continue
                    seen.add(key)
                    if self._should_follow(key, scope):
                        next_frontier.append(link)

            frontier = next_frontier
            depth += 1

        self.logger.info(f"🕸️ Link crawl found {len(found)} pages in {depth} levels")
        return found

    def _should_follow(self, url: str, scope: CrawlScope) -> bool:
        if reject_reason(url, scope) is not None:
            return False
        return not scope.is_root or looks_like_docs(url)

    def _log_discovery_summary(self, stats: dict[str, Any]) -> None:
        self.logger.info("📈 URL Discovery Summary:")
        self.logger.info(f"   🎯 Scope: {stats['scope']}")
        self.logger.info(
            f"   🗺️ Sitemaps: {stats['sitemap_urls']} found, {stats['sitemap_kept']} kept"
        )
        if stats["link_crawl_used"]:
            self.logger.info(f"   🕸️ Link crawl: {stats['link_crawl_urls']} pages")
        if stats["rejected"]:
            reasons = ", ".join(f"{k}={v}" for k, v in sorted(stats["rejected"].items()))
            self.logger.info(f"   🔽 Rejected: {reasons}")
        self.logger.info(f"   📊 Final: {stats['final_count']} URLs")


def parse_sitemap(content: str) -> tuple[str, list[str]]:
    """
    Parse sitemap content.

    Returns:
        ("index", child sitemap URLs), ("urlset", page URLs) or ("text", page URLs)
    """
    stripped = content.lstrip()
    if not stripped.startswith("<"):
        lines = [line.strip() for line in content.splitlines()]
        return "text", [line for line in lines if line.startswith(("http://", "https://"))]

    try:
        root = ET.fromstring(stripped)
    except ET.ParseError:
        # Malformed XML: pull <loc> values out by regex
        kind = "index" if "<sitemapindex" in stripped.lower() else "urlset"
        return kind, [m.strip() for m in _LOC_RE.findall(stripped)]

    tag = root.tag.split("}", 1)[-1].lower()
    locs = [
        el.text.strip()
        for el in root.iter()
        if el.tag.split("}", 1)[-1].lower() == "loc" and el.text and el.text.strip()
    ]
    if tag in ("sitemapindex", "sitemap_index"):
        return "index", locs
    if tag == "urlset":
        return "urlset", locs
    return "unknown", []


def parse_robots_sitemaps(robots_text: str) -> list[str]:
    """Sitemap URLs declared in robots.txt; all other rules are ignored."""
    sitemaps = []
    for line in robots_text.splitlines():
        line = line.strip()
        if line.lower().startswith("sitemap:"):
            sitemap_url = line.split(":", 1)[1].strip()
            if sitemap_url:
                sitemaps.append(sitemap_url)
    return sitemaps


def extract_links(html: str, page_url: str) -> list[str]:
    """Absolute http(s) links from anchor tags in document order, fragments removed."""
    soup = BeautifulSoup(html, "html.parser")
    base = soup.find("base", href=True)
    if base is not None:
        page_url = urljoin(page_url, str(base["href"]))

    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith(("#", "mailto:", "javascript:", "tel:")):
            continue
        absolute = urldefrag(urljoin(page_url, href))[0]
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        links.append(absolute)
    return links
