"""Registry persistence: indexed documents, crawl jobs and session attachments."""

from .models import Base, CrawlJobRow, IndexedDocumentRow, SessionDocumentRow
from .registry import DocumentRegistry
from .session import create_engine, create_session_factory, init_models

__all__ = [
    "Base",
    "CrawlJobRow",
    "DocumentRegistry",
    "IndexedDocumentRow",
    "SessionDocumentRow",
    "create_engine",
    "create_session_factory",
    "init_models",
]
