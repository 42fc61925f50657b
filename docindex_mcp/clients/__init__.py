"""
Network clients for external services.
"""

from .firecrawl_client import FirecrawlClient, FirecrawlPage
from .qdrant_http_client import QdrantClient
from .tei_client import TEIEmbeddingsClient

__all__ = ["FirecrawlClient", "FirecrawlPage", "QdrantClient", "TEIEmbeddingsClient"]
