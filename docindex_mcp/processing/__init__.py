"""
Ingestion steps: URL discovery, page fetching, section extraction and deduplication.
"""

from .deduplication import SectionDeduplicator
from .page_fetcher import PageFetcher
from .section_extractor import SectionExtractor
from .url_discovery import URLDiscoverer

__all__ = ["PageFetcher", "SectionDeduplicator", "SectionExtractor", "URLDiscoverer"]
