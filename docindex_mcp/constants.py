"""
Configuration constants for the DocIndex MCP server.

This module centralizes all magic numbers, default values, and string enumerations
used throughout the ingestion pipeline to improve maintainability.
"""

from enum import Enum
from typing import Final

# =============================================================================
# SERVER & NETWORK CONSTANTS
# =============================================================================

DEFAULT_HOST: Final[str] = "127.0.0.1"
DEFAULT_PORT: Final[int] = 8000

# Network timeouts (in seconds)
QDRANT_DEFAULT_TIMEOUT: Final[float] = 10.0
TEI_DEFAULT_TIMEOUT: Final[float] = 30.0
FIRECRAWL_DEFAULT_TIMEOUT: Final[float] = 45.0
SITEMAP_DEFAULT_TIMEOUT: Final[float] = 15.0

# Retry configuration
DEFAULT_RETRY_COUNT: Final[int] = 3
RETRY_INITIAL_DELAY: Final[float] = 1.0

# =============================================================================
# EMBEDDING & VECTOR STORE CONSTANTS
# =============================================================================

DEFAULT_EMBEDDING_DIMENSION: Final[int] = 768
DEFAULT_EMBEDDING_BATCH_SIZE: Final[int] = 20
DEFAULT_COLLECTION_NAME: Final[str] = "code_snippets"
EMBEDDING_EXCERPT_CHARS: Final[int] = 300
DEFAULT_WORD_TO_TOKEN_RATIO: Final[float] = 1.4

# =============================================================================
# DISCOVERY CONSTANTS
# =============================================================================

DEFAULT_MAX_PAGES: Final[int] = 50
MAX_PAGES_LIMIT: Final[int] = 200
DEFAULT_SITEMAP_MIN_URLS: Final[int] = 5
DEFAULT_MAX_CRAWL_DEPTH: Final[int] = 3
MAX_NESTED_SITEMAPS: Final[int] = 200

DEFAULT_USER_AGENT: Final[str] = "Mozilla/5.0 (compatible; DocumentationCrawler/1.0)"

SITEMAP_PATHS: Final[tuple[str, ...]] = (
    "/sitemap.xml",
    "/sitemap_index.xml",
    "/sitemap.txt",
    "/docs/sitemap.xml",
    "/api/sitemap.xml",
    "/sitemap",
)

FOREIGN_LANGUAGE_CODES: Final[frozenset[str]] = frozenset(
    {
        "zh-cn", "zh-tw", "zh", "ja", "ko", "es", "fr", "de", "ru", "pt",
        "pt-br", "it", "ar", "hi", "nl", "pl", "tr", "vi", "id", "th",
        "cs", "da", "fi", "el", "he", "hu", "no", "ro", "sk", "sv",
        "uk", "bg",
    }
)

LANGUAGE_QUERY_PARAMS: Final[tuple[str, ...]] = ("lang", "language", "locale", "hl")

TRACKING_QUERY_PARAMS: Final[frozenset[str]] = frozenset(
    {
        "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
        "gclid", "fbclid", "msclkid", "ref", "ref_src", "mc_cid", "mc_eid", "_ga",
    }
)

# Path fragments that never hold documentation, for root crawls
ROOT_EXCLUDED_PATH_PATTERNS: Final[tuple[str, ...]] = (
    "/blog",
    "/news",
    "/community",
    "/about",
    "/careers",
    "/jobs",
    "/pricing",
    "/customers",
    "/privacy",
    "/terms",
    "/legal",
    "/signin",
    "/sign-in",
    "/signup",
    "/sign-up",
    "/login",
    "/logout",
    "/register",
    "/contact",
)

# Scoped crawls already sit under a documentation prefix; only drop auth/legal
SCOPED_EXCLUDED_PATH_PATTERNS: Final[tuple[str, ...]] = (
    "/privacy",
    "/terms",
    "/legal",
    "/signin",
    "/sign-in",
    "/signup",
    "/sign-up",
    "/login",
    "/logout",
    "/register",
)

DOC_PATH_HINTS: Final[tuple[str, ...]] = (
    "/docs",
    "/doc/",
    "/guide",
    "/api",
    "/reference",
    "/tutorial",
    "/manual",
    "/learn",
    "/documentation",
    "/getting-started",
    "/examples",
    "/handbook",
)

EXCLUDED_FILE_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {
        ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp",
        ".ico", ".mp4", ".mp3", ".avi", ".mov", ".zip", ".tar", ".gz",
        ".css", ".js", ".json", ".xml", ".txt", ".woff", ".woff2",
    }
)

# =============================================================================
# EXTRACTION CONSTANTS
# =============================================================================

MIN_CODE_LENGTH: Final[int] = 10
MAX_CODE_LENGTH: Final[int] = 2000
CODE_CONTEXT_BEFORE_CHARS: Final[int] = 300
CODE_CONTEXT_AFTER_CHARS: Final[int] = 200
IMPORTANT_SECTION_MIN_CHARS: Final[int] = 400
MIN_SECTION_CHARS: Final[int] = 50
MAX_HEADING_CHARS: Final[int] = 200

IMPORTANT_KEYWORDS: Final[tuple[str, ...]] = (
    "install",
    "setup",
    "set up",
    "getting started",
    "get started",
    "quickstart",
    "quick start",
    "api",
    "reference",
    "guide",
    "tutorial",
    "configuration",
    "config",
    "auth",
    "deploy",
    "usage",
    "example",
)

# =============================================================================
# DEDUPLICATION CONSTANTS
# =============================================================================

DEFAULT_MAX_SECTIONS: Final[int] = 500
DEFAULT_DEDUP_KEY_LENGTH: Final[int] = 200

PRIORITY_CATEGORIES: Final[tuple[str, ...]] = (
    "Installation",
    "Getting Started",
    "API Reference",
    "Guide",
)

# =============================================================================
# RETRIEVAL CONSTANTS
# =============================================================================

DEFAULT_SEARCH_LIMIT: Final[int] = 5
DEFAULT_FILTER_MULTIPLIER: Final[int] = 5
DEFAULT_MIN_SCORE: Final[float] = 0.45
DEFAULT_MAX_RESULTS: Final[int] = 10
DEFAULT_MULTI_DOC_BUDGET: Final[int] = 12
MIN_PER_DOC_QUOTA: Final[int] = 3
MIN_MULTI_DOC_SEARCH_LIMIT: Final[int] = 50
MULTI_DOC_LIMIT_FACTOR: Final[int] = 4
TARGETED_PER_DOC_QUOTA: Final[int] = 5

HIGH_TARGET_CONFIDENCE: Final[float] = 0.9
LOW_TARGET_CONFIDENCE: Final[float] = 0.5
TARGET_CONFIDENCE_THRESHOLD: Final[float] = 0.7

GENERIC_DOC_IDENTIFIERS: Final[frozenset[str]] = frozenset(
    {"docs", "doc", "api", "guide", "guides", "www", "en", "latest", "reference", "v1", "v2"}
)

# =============================================================================
# ORCHESTRATION CONSTANTS
# =============================================================================

DEFAULT_PAGE_CONCURRENCY: Final[int] = 3
MAX_PAGE_CONCURRENCY: Final[int] = 10
DEFAULT_STEP_RETRIES: Final[int] = 2
DEFAULT_JOB_TIMEOUT_SECONDS: Final[float] = 900.0
DEFAULT_INTER_REQUEST_DELAY: Final[float] = 0.25

DISCOVERY_PROGRESS_SHARE: Final[int] = 10
CRAWL_PROGRESS_SHARE: Final[int] = 60
EMBEDDING_PROGRESS_START: Final[int] = 85
MAX_FINISHED_TRACKERS: Final[int] = 256

# =============================================================================
# STRING ENUMERATIONS
# =============================================================================


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class DistanceMetric(str, Enum):
    """Qdrant distance metrics."""

    COSINE = "Cosine"
    EUCLID = "Euclid"
    DOT = "Dot"
