"""
Pydantic models shared across the ingestion pipeline.
"""

from .crawl import (
    ContentType,
    CrawlJob,
    CrawlMethod,
    DocumentStatus,
    FetchMethod,
    FetchResult,
    IndexedDocument,
    JobStatus,
    ProgressEvent,
    SubmitResult,
    SubmitStatus,
)
from .sections import (
    EmbeddedPoint,
    QueryTargets,
    RankedResults,
    SearchHit,
    Section,
    SectionCategory,
    SectionType,
)

__all__ = [
    "ContentType",
    "CrawlJob",
    "CrawlMethod",
    "DocumentStatus",
    "EmbeddedPoint",
    "FetchMethod",
    "FetchResult",
    "IndexedDocument",
    "JobStatus",
    "ProgressEvent",
    "QueryTargets",
    "RankedResults",
    "SearchHit",
    "Section",
    "SectionCategory",
    "SectionType",
    "SubmitResult",
    "SubmitStatus",
]
