"""
Pure URL predicates used by discovery: scope, language, noise and resource filters.

Every predicate is a plain function over strings so that the filter pipeline can
be unit-tested without any network I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qsl, urlparse

from ..constants import (
    DOC_PATH_HINTS,
    EXCLUDED_FILE_EXTENSIONS,
    FOREIGN_LANGUAGE_CODES,
    LANGUAGE_QUERY_PARAMS,
    ROOT_EXCLUDED_PATH_PATTERNS,
    SCOPED_EXCLUDED_PATH_PATTERNS,
)
from ..core.utils import normalize_url, path_depth


class RejectReason(str, Enum):
    INVALID = "invalid"
    OUT_OF_SCOPE = "out_of_scope"
    LANGUAGE = "language"
    EXCLUDED_PATH = "excluded_path"
    RESOURCE = "resource"


@dataclass(frozen=True)
class CrawlScope:
    """Origin plus path prefix that every discovered URL must sit under."""

    origin: str
    path_prefix: str  # "" for whole-origin crawls

    @classmethod
    def from_root(cls, root_url: str) -> CrawlScope:
        parsed = urlparse(normalize_url(root_url))
        origin = f"{parsed.scheme}://{parsed.netloc}"
        prefix = parsed.path.rstrip("/")
        return cls(origin=origin, path_prefix=prefix)

    @property
    def is_root(self) -> bool:
        return not self.path_prefix

    @property
    def root_url(self) -> str:
        return f"{self.origin}{self.path_prefix or '/'}"

    def contains(self, url: str) -> bool:
        """True when ``url`` has the same origin and a path at or under the prefix."""
        parsed = urlparse(normalize_url(url))
        if f"{parsed.scheme}://{parsed.netloc}" != self.origin:
            return False
        if self.is_root:
            return True
        path = parsed.path.rstrip("/")
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    def relative_segments(self, url: str) -> list[str]:
        """Lowercased path segments below the scope prefix."""
        path = urlparse(url).path
        if self.path_prefix and path.startswith(self.path_prefix):
            path = path[len(self.path_prefix) :]
        return [segment.lower() for segment in path.split("/") if segment]


def is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_foreign_language(url: str, scope: CrawlScope) -> bool:
    """
    Detect non-English pages.

    A page is foreign when its first path segment below the scope is a known
    language code (``/docs/ja/guide`` under ``/docs``), or when a language
    query parameter names anything other than English.
    """
    segments = scope.relative_segments(url)
    if segments and segments[0] in FOREIGN_LANGUAGE_CODES:
        return True

    for key, value in parse_qsl(urlparse(url).query):
        if key.lower() in LANGUAGE_QUERY_PARAMS and value:
            if not value.lower().startswith("en"):
                return True
    return False


def is_excluded_path(url: str, scope: CrawlScope) -> bool:
    """Auth, legal and marketing pages. Scoped crawls use a narrower list."""
    patterns = (
        ROOT_EXCLUDED_PATH_PATTERNS if scope.is_root else SCOPED_EXCLUDED_PATH_PATTERNS
    )
    segments = set(scope.relative_segments(url))
    return any(pattern.strip("/") in segments for pattern in patterns)


def is_non_document_resource(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(path.endswith(ext) for ext in EXCLUDED_FILE_EXTENSIONS)


def looks_like_docs(url: str) -> bool:
    """Documentation-likeness of a URL, from its host and path."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host.startswith(("docs.", "doc.", "developer.", "developers.")):
        return True
    path = parsed.path.lower()
    return any(hint in path for hint in DOC_PATH_HINTS)


def reject_reason(url: str, scope: CrawlScope) -> RejectReason | None:
    """
    Run one URL through the discovery filter pipeline.

    Returns:
        None when the URL is kept, otherwise the first failing check
    """
    if not is_http_url(url):
        return RejectReason.INVALID
    if not scope.contains(url):
        return RejectReason.OUT_OF_SCOPE
    if is_non_document_resource(url):
        return RejectReason.RESOURCE
    if is_foreign_language(url, scope):
        return RejectReason.LANGUAGE
    if is_excluded_path(url, scope):
        return RejectReason.EXCLUDED_PATH
    return None


def sort_urls(urls: list[str]) -> list[str]:
    """Shallow pages first, then lexicographic."""
    return sorted(urls, key=lambda u: (path_depth(u), u))
