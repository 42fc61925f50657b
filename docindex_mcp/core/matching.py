"""
Attribution of search hits to indexed documents.

A document can be referenced by its canonical base URL, by any crawled
sub-page URL, or loosely by hostname, and stored representations drift
(trailing slashes, scheme, query order). Matching therefore runs an ordered
list of equivalence predicates and stops at the first that holds.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from urllib.parse import urlparse

from ..models.sections import SearchHit
from .utils import normalize_url

MatchPredicate = Callable[[str, str, str], bool]


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def _is_prefix(prefix: str, url: str) -> bool:
    """Path-aware prefix test: ``/docs`` covers ``/docs/x`` but not ``/docs2``."""
    if not prefix or not url:
        return False
    if url == prefix:
        return True
    if prefix.endswith("/"):
        return url.startswith(prefix)
    return url.startswith(prefix) and url[len(prefix)] in "/?#"


def exact_base_match(base_url: str, source_url: str, doc_url: str) -> bool:
    return bool(base_url) and normalize_url(base_url) == normalize_url(doc_url)


def source_prefix_match(base_url: str, source_url: str, doc_url: str) -> bool:
    return _is_prefix(normalize_url(doc_url), normalize_url(source_url)) if source_url else False


def hostname_match(base_url: str, source_url: str, doc_url: str) -> bool:
    hit_host = _host(source_url or base_url)
    doc_host = _host(doc_url)
    return bool(hit_host and doc_host) and hit_host in doc_host


def reverse_prefix_match(base_url: str, source_url: str, doc_url: str) -> bool:
    return _is_prefix(normalize_url(base_url), normalize_url(doc_url)) if base_url else False


MATCH_PREDICATES: tuple[tuple[str, MatchPredicate], ...] = (
    ("exact_base", exact_base_match),
    ("source_prefix", source_prefix_match),
    ("hostname", hostname_match),
    ("reverse_prefix", reverse_prefix_match),
)


def match_strategy(hit: SearchHit, doc_url: str) -> str | None:
    """Name of the first predicate tying ``hit`` to ``doc_url``, or None."""
    for name, predicate in MATCH_PREDICATES:
        if predicate(hit.base_url, hit.source_url, doc_url):
            return name
    return None


def matches_document(hit: SearchHit, doc_url: str) -> bool:
    return match_strategy(hit, doc_url) is not None


def assign_document(hit: SearchHit, doc_urls: Iterable[str]) -> str | None:
    """
    Owning document of a hit among several candidates.

    Predicates are tried strongest first across all candidates, so a hit whose
    base URL equals one document is never claimed by a sibling document on the
    same host through the looser hostname test.
    """
    candidates = list(doc_urls)
    for _name, predicate in MATCH_PREDICATES:
        for doc_url in candidates:
            if predicate(hit.base_url, hit.source_url, doc_url):
                return doc_url
    return None
