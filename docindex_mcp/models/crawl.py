"""
Data models for crawl jobs, indexed documents and progress events.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Lifecycle of one ingestion run."""

    QUEUED = "queued"
    DISCOVERING = "discovering"
    CRAWLING = "crawling"
    EMBEDDING = "embedding"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


class DocumentStatus(str, Enum):
    """Global indexing state of one root URL."""

    INDEXING = "indexing"
    COMPLETE = "complete"
    FAILED = "failed"


class SubmitStatus(str, Enum):
    """Outcome of a crawl submission."""

    READY = "ready"
    INDEXING = "indexing"
    QUEUED = "queued"
    ERROR = "error"


class FetchMethod(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class ContentType(str, Enum):
    MARKDOWN = "markdown"
    HTML = "html"


class CrawlMethod(str, Enum):
    """Which fetch methods a finished job relied on."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    MIXED = "mixed"
    NONE = "none"

    @classmethod
    def from_counts(cls, primary: int, fallback: int) -> CrawlMethod:
        if primary and fallback:
            return cls.MIXED
        if primary:
            return cls.PRIMARY
        if fallback:
            return cls.FALLBACK
        return cls.NONE


class FetchResult(BaseModel):
    """Raw content of one page and how it was obtained."""

    url: str
    content: str
    method: FetchMethod
    content_type: ContentType


class CrawlJob(BaseModel):
    """One ingestion run, owned by the orchestrator."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    url: str
    user_id: str
    status: JobStatus = JobStatus.QUEUED
    session_id: str | None = None
    error: str | None = None
    pages_found: int = 0
    pages_processed: int = 0
    sections_extracted: int = 0
    sections_deduplicated: int = 0
    sections_stored: int = 0
    crawl_method: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class IndexedDocument(BaseModel):
    """Global indexing record for one normalized root URL."""

    model_config = ConfigDict(from_attributes=True)

    url: str
    name: str
    status: DocumentStatus
    section_count: int = 0
    job_id: str | None = None
    indexed_by: str | None = None
    error: str | None = None
    crawl_method: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SubmitResult(BaseModel):
    """Answer to a crawl submission."""

    status: SubmitStatus
    message: str
    job_id: str | None = None
    url: str | None = None
    from_cache: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ProgressEvent(BaseModel):
    """Progress notification emitted at pipeline stage transitions."""

    job_id: str
    url: str
    status: JobStatus
    message: str
    percentage: int | None = Field(default=None, ge=0, le=100)
    stats: dict[str, Any] | None = None
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
