"""
SQLAlchemy Models

Defines the registry schema:
- Indexed documents (one global record per normalized root URL)
- Crawl jobs
- Session to document attachments
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class IndexedDocumentRow(Base):
    """
    Global indexing record, keyed by normalized root URL.

    The primary key doubles as the lock that keeps one active indexer per URL.
    """

    __tablename__ = "indexed_documents"

    url: Mapped[str] = mapped_column(String(2048), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    section_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    indexed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    crawl_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_documents_indexed_by", "indexed_by"),)


class CrawlJobRow(Base):
    """One ingestion run and its counters."""

    __tablename__ = "crawl_jobs"

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pages_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pages_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sections_extracted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sections_deduplicated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sections_stored: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    crawl_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class SessionDocumentRow(Base):
    """A document base URL attached to a chat session."""

    __tablename__ = "session_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("session_id", "url", name="uq_session_document"),
        Index("idx_session_documents_session", "session_id"),
    )
