"""
Document Registry

Global "already indexed" state, crawl job records and session attachments.

The indexed-document table is the only cross-job shared mutable state. Claims
go through a single conditional upsert so two concurrent submissions of the
same URL can never both start a pipeline.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import StoreError
from ..core.logging import get_class_logger
from ..core.utils import derive_doc_name
from ..models.crawl import CrawlJob, DocumentStatus, IndexedDocument, JobStatus
from .models import CrawlJobRow, IndexedDocumentRow, SessionDocumentRow

_INSERTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


def _now() -> datetime:
    return datetime.now(UTC)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class DocumentRegistry:
    """
    Registry of indexed documents, crawl jobs and session attachments.

    All methods open their own short transaction; SQLAlchemy errors surface
    as ``StoreError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self.logger = get_class_logger(self)

    def _insert(self, session: AsyncSession, table: Any) -> Any:
        dialect = session.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            raise StoreError(f"Unsupported registry database dialect: {dialect}")
        return insert(table)

    # ------------------------------------------------------------------
    # Indexed documents
    # ------------------------------------------------------------------

    async def claim(
        self,
        url: str,
        job_id: str,
        user_id: str,
        name: str | None = None,
    ) -> tuple[bool, IndexedDocument]:
        """
        Atomically become the indexer for ``url``.

        Inserts an ``indexing`` record, or takes over a ``failed`` one, in a
        single ``INSERT ... ON CONFLICT DO UPDATE ... WHERE status = 'failed'``.
        A record that is ``indexing`` or ``complete`` is left untouched.

        Args:
            url: Normalized root URL
            job_id: Job that will do the indexing if the claim wins
            user_id: Requesting user
            name: Display name, derived from the hostname when omitted

        Returns:
            (claimed, current record). When ``claimed`` is False the record
            belongs to another job or is already complete.
        """
        now = _now()
        try:
            async with self._session_factory() as session, session.begin():
                stmt = self._insert(session, IndexedDocumentRow).values(
                    url=url,
                    name=name or derive_doc_name(url),
                    status=DocumentStatus.INDEXING.value,
                    section_count=0,
                    job_id=job_id,
                    indexed_by=user_id,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[IndexedDocumentRow.url],
                    set_={
                        "status": DocumentStatus.INDEXING.value,
                        "job_id": stmt.excluded.job_id,
                        "indexed_by": stmt.excluded.indexed_by,
                        "section_count": 0,
                        "error": None,
                        "crawl_method": None,
                        "updated_at": now,
                    },
                    where=IndexedDocumentRow.status == DocumentStatus.FAILED.value,
                ).returning(IndexedDocumentRow.job_id)

                claimed = (await session.execute(stmt)).first() is not None
                row = await session.get(IndexedDocumentRow, url, populate_existing=True)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to claim {url}", e) from e

        if row is None:
            raise StoreError(f"Registry record for {url} vanished during claim")
        document = IndexedDocument.model_validate(row)
        if claimed:
            self.logger.info(f"Claimed {url} for job {job_id}")
        else:
            self.logger.info(f"{url} already {document.status.value} (job {document.job_id})")
        return claimed, document

    async def get_document(self, url: str) -> IndexedDocument | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(IndexedDocumentRow, url)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read registry record for {url}", e) from e
        return IndexedDocument.model_validate(row) if row else None

    async def mark_complete(
        self,
        url: str,
        section_count: int,
        *,
        crawl_method: str | None = None,
        job_id: str | None = None,
        indexed_by: str | None = None,
        name: str | None = None,
    ) -> None:
        """Record a finished index, creating the record if it is missing."""
        now = _now()
        try:
            async with self._session_factory() as session, session.begin():
                stmt = self._insert(session, IndexedDocumentRow).values(
                    url=url,
                    name=name or derive_doc_name(url),
                    status=DocumentStatus.COMPLETE.value,
                    section_count=section_count,
                    job_id=job_id,
                    indexed_by=indexed_by,
                    crawl_method=_plain(crawl_method),
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[IndexedDocumentRow.url],
                    set_={
                        "status": DocumentStatus.COMPLETE.value,
                        "section_count": section_count,
                        "crawl_method": stmt.excluded.crawl_method,
                        "error": None,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to mark {url} complete", e) from e

    async def mark_failed(self, url: str, error: str) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(IndexedDocumentRow)
                    .where(IndexedDocumentRow.url == url)
                    .values(
                        status=DocumentStatus.FAILED.value,
                        error=error,
                        updated_at=_now(),
                    )
                )
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to mark {url} failed", e) from e

    async def fail_interrupted(self, error: str) -> int:
        """
        Mark every ``indexing`` document and every non-terminal job failed.

        Only safe while no job of this registry is running, i.e. at startup.

        Returns:
            Number of documents released for a new claim
        """
        now = _now()
        open_statuses = [s.value for s in JobStatus if not s.is_terminal]
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(IndexedDocumentRow)
                    .where(IndexedDocumentRow.status == DocumentStatus.INDEXING.value)
                    .values(status=DocumentStatus.FAILED.value, error=error, updated_at=now)
                )
                await session.execute(
                    update(CrawlJobRow)
                    .where(CrawlJobRow.status.in_(open_statuses))
                    .values(status=JobStatus.FAILED.value, error=error, updated_at=now)
                )
        except SQLAlchemyError as e:
            raise StoreError("Failed to release interrupted documents", e) from e
        return int(result.rowcount or 0)

    async def list_documents(
        self,
        indexed_by: str | None = None,
        status: DocumentStatus | None = None,
    ) -> list[IndexedDocument]:
        query = select(IndexedDocumentRow).order_by(IndexedDocumentRow.created_at.desc())
        if indexed_by is not None:
            query = query.where(IndexedDocumentRow.indexed_by == indexed_by)
        if status is not None:
            query = query.where(IndexedDocumentRow.status == status.value)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreError("Failed to list indexed documents", e) from e
        return [IndexedDocument.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def attach_to_session(self, session_id: str, url: str) -> bool:
        """Associate a document with a session; returns False if already attached."""
        try:
            async with self._session_factory() as session, session.begin():
                stmt = (
                    self._insert(session, SessionDocumentRow)
                    .values(session_id=session_id, url=url, created_at=_now())
                    .on_conflict_do_nothing(
                        index_elements=[SessionDocumentRow.session_id, SessionDocumentRow.url]
                    )
                )
                result = await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to attach {url} to session {session_id}", e) from e
        return bool(result.rowcount)

    async def session_documents(self, session_id: str) -> list[str]:
        """Base URLs attached to a session, in attachment order."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SessionDocumentRow.url)
                    .where(SessionDocumentRow.session_id == session_id)
                    .order_by(SessionDocumentRow.id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read documents for session {session_id}", e) from e

    # ------------------------------------------------------------------
    # Crawl jobs
    # ------------------------------------------------------------------

    async def create_job(self, job: CrawlJob) -> CrawlJob:
        row = CrawlJobRow(**job.model_dump(mode="python"))
        row.status = _plain(job.status)
        try:
            async with self._session_factory() as session, session.begin():
                session.add(row)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create job {job.job_id}", e) from e
        return job

    async def update_job(self, job_id: str, **fields: Any) -> CrawlJob | None:
        """Update job columns; enum values are stored as their string value."""
        values = {key: _plain(value) for key, value in fields.items()}
        values["updated_at"] = _now()
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(CrawlJobRow).where(CrawlJobRow.job_id == job_id).values(**values)
                )
                row = await session.get(CrawlJobRow, job_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update job {job_id}", e) from e
        return CrawlJob.model_validate(row) if row else None

    async def get_job(self, job_id: str) -> CrawlJob | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(CrawlJobRow, job_id)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read job {job_id}", e) from e
        return CrawlJob.model_validate(row) if row else None
