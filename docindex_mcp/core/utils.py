"""
Common utilities for the DocIndex MCP project.

URL canonicalization, whitespace handling, slugs and token estimates used by
discovery, extraction, deduplication and the embedding writer.
"""

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from ..constants import DEFAULT_WORD_TO_TOKEN_RATIO, TRACKING_QUERY_PARAMS
from .logging import get_logger

logger = get_logger(__name__)

_DEFAULT_PORTS = {"http": "80", "https": "443"}
_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_DASH_RE = re.compile(r"[\s_-]+")


def normalize_url(url: str) -> str:
    """
    Canonicalize a URL for deduplication and registry keys.

    Normalizations applied:
    - Lowercases scheme and host, drops default ports
    - Removes the fragment
    - Removes known tracking query parameters, sorts the rest
    - Removes trailing slashes from the path, except for the root path

    The function is idempotent: ``normalize_url(normalize_url(u)) == normalize_url(u)``.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL string

    Examples:
        >>> normalize_url("https://Example.com/docs/?utm_source=x&b=2&a=1#intro")
        "https://example.com/docs?a=1&b=2"

        >>> normalize_url("https://example.com")
        "https://example.com/"
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        logger.warning(f"Failed to normalize URL '{url}': {e}")
        return url

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    host, sep, port = netloc.rpartition(":")
    if sep and port == _DEFAULT_PORTS.get(scheme) and "]" not in port:
        netloc = host

    path = parsed.path.rstrip("/") or "/"

    query = ""
    if parsed.query:
        params = [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if key.lower() not in TRACKING_QUERY_PARAMS
        ]
        query = urlencode(sorted(params))

    return urlunparse((scheme, netloc, path, "", query, ""))


def path_depth(url: str) -> int:
    """Number of non-empty path segments in a URL."""
    return len([segment for segment in urlparse(url).path.split("/") if segment])


def normalize_whitespace(content: str) -> str:
    """
    Collapse runs of whitespace into single spaces and strip the ends.

    Examples:
        >>> normalize_whitespace("  Hello    world  \\n\\t  ")
        "Hello world"
    """
    if not content:
        return ""
    return re.sub(r"\s+", " ", content.strip())


def slugify(text: str) -> str:
    """
    Build a URL anchor slug from heading text.

    Examples:
        >>> slugify("Getting Started: Install!")
        "getting-started-install"
    """
    slug = _SLUG_STRIP_RE.sub("", text.lower()).strip()
    return _SLUG_DASH_RE.sub("-", slug).strip("-")


def derive_doc_name(base_url: str) -> str:
    """
    Derive a display name for a documentation site from its hostname.

    ``https://www.fastapi.tiangolo.com/`` becomes ``"Fastapi"``.
    """
    hostname = (urlparse(base_url).hostname or "").lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    label = hostname.split(".")[0] if hostname else ""
    return label[:1].upper() + label[1:] if label else "Documentation"


def estimate_tokens(text: str, ratio: float = DEFAULT_WORD_TO_TOKEN_RATIO) -> int:
    """Approximate a token count from the word count."""
    if not text:
        return 0
    return max(1, int(len(text.split()) * ratio))
