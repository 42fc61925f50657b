"""
Crawl job orchestrator.

Sequences discovery, per-page fetch and extraction, deduplication and the
embedding writer as one job with explicit step boundaries:

    queued -> discovering -> crawling -> embedding -> complete

``failed`` is reachable from every non-terminal state.

Each step is retried on its own budget before the job fails. The global
document registry guarantees at most one running job per normalized URL.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..constants import CRAWL_PROGRESS_SHARE, DISCOVERY_PROGRESS_SHARE, EMBEDDING_PROGRESS_START
from ..db.registry import DocumentRegistry
from ..models.crawl import (
    ContentType,
    CrawlJob,
    CrawlMethod,
    DocumentStatus,
    FetchResult,
    JobStatus,
    ProgressEvent,
    SubmitResult,
    SubmitStatus,
)
from ..models.sections import Section
from ..processing.deduplication import SectionDeduplicator
from ..processing.page_fetcher import PageFetcher
from ..processing.section_extractor import SectionExtractor
from ..processing.url_discovery import URLDiscoverer
from ..settings import DocIndexSettings, get_settings
from .async_utils import TaskManager, gather_bounded, retry_call
from .embeddings import EmbeddingService
from .exceptions import DocIndexError, FetchError, JobTimeoutError, StoreError
from .indexing import EmbeddingWriter, IndexingResult
from .logging import get_class_logger
from .progress import LoggingProgressSink, ProgressSink
from .utils import derive_doc_name, normalize_url
from .vectors import VectorService

NO_CONTENT_MESSAGE = "No documentation content found"
JOB_CANCELLED_MESSAGE = "Job cancelled"
JOB_INTERRUPTED_MESSAGE = "Job interrupted by a server restart"


@dataclass
class PageOutcome:
    url: str
    sections: list[Section] = field(default_factory=list)
    content_type: ContentType | None = None


@dataclass
class CrawlOutcome:
    """Everything the crawling step produced for one job."""

    sections: list[Section]
    pages_processed: int
    markdown_pages: int
    html_pages: int
    fetcher_stats: dict[str, Any]


class CrawlOrchestrator:
    """
    Runs crawl jobs and answers submissions.

    Discoverer and fetcher are built per job through factories so credential
    exhaustion and HTTP connection pools never outlive a job.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        embedding_service: EmbeddingService,
        vector_service: VectorService,
        settings: DocIndexSettings | None = None,
        *,
        progress_sink: ProgressSink | None = None,
        discoverer_factory: Callable[[], URLDiscoverer] | None = None,
        fetcher_factory: Callable[[], PageFetcher] | None = None,
        extractor: SectionExtractor | None = None,
        deduplicator: SectionDeduplicator | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = get_class_logger(self)
        self.registry = registry
        self.vectors = vector_service
        self.writer = EmbeddingWriter(embedding_service, vector_service, self.settings)
        self.progress = progress_sink or LoggingProgressSink()
        self._discoverer_factory = discoverer_factory or (lambda: URLDiscoverer(self.settings))
        self._fetcher_factory = fetcher_factory or (lambda: PageFetcher(self.settings))
        self.extractor = extractor or SectionExtractor(self.settings)
        self.deduplicator = deduplicator or SectionDeduplicator(self.settings)
        self.tasks = TaskManager()

    async def close(self) -> None:
        """Cancel running jobs; each one records itself as failed."""
        await self.tasks.cancel_all()

    async def recover_interrupted(self) -> int:
        """
        Fail documents and jobs left mid-pipeline by a previous process.

        Call once at startup, before any job is submitted. Returns the number
        of released documents.
        """
        released = await self.registry.fail_interrupted(JOB_INTERRUPTED_MESSAGE)
        if released:
            self.logger.warning(f"Released {released} documents left indexing by a previous run")
        return released

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_crawl(
        self, url: str, user_id: str, session_id: str | None = None
    ) -> SubmitResult:
        """
        Submit a documentation root for indexing.

        Complete documents are served from cache for every user; a document
        that is being indexed returns the running job's id; anything else is
        claimed and queued.

        Args:
            url: Validated root URL
            user_id: Requesting user
            session_id: Session to attach the document to

        Returns:
            SubmitResult with status ready, indexing or queued
        """
        doc_url = normalize_url(url)
        existing = await self.registry.get_document(doc_url)

        if existing is None:
            healed = await self._heal_from_store(doc_url, user_id, session_id)
            if healed is not None:
                return healed
        elif existing.status != DocumentStatus.FAILED:
            await self._attach(session_id, doc_url)
            return self._existing_result(doc_url, existing.status, existing.job_id)

        job_id = uuid.uuid4().hex
        claimed, document = await self.registry.claim(
            doc_url, job_id, user_id, derive_doc_name(doc_url)
        )
        if not claimed:
            await self._attach(session_id, doc_url)
            return self._existing_result(doc_url, document.status, document.job_id)

        job = CrawlJob(job_id=job_id, url=doc_url, user_id=user_id, session_id=session_id)
        try:
            await self.registry.create_job(job)
        except StoreError as e:
            await self.registry.mark_failed(doc_url, e.message)
            raise

        await self._emit(job, JobStatus.QUEUED, "Queued for indexing", 0)
        self.tasks.create_task(self.run_job(job), name=job_id)
        self.logger.info(f"Queued job {job_id} for {doc_url} (user {user_id})")
        return SubmitResult(
            status=SubmitStatus.QUEUED,
            message="Indexing started",
            job_id=job_id,
            url=doc_url,
        )

    def _existing_result(
        self, doc_url: str, status: DocumentStatus, job_id: str | None
    ) -> SubmitResult:
        if status == DocumentStatus.COMPLETE:
            return SubmitResult(
                status=SubmitStatus.READY,
                message="Documentation already indexed",
                job_id=job_id,
                url=doc_url,
                from_cache=True,
            )
        return SubmitResult(
            status=SubmitStatus.INDEXING,
            message="Documentation is already being indexed",
            job_id=job_id,
            url=doc_url,
        )

    async def _heal_from_store(
        self, doc_url: str, user_id: str, session_id: str | None
    ) -> SubmitResult | None:
        """Restore a lost registry record when the vector store already holds the document."""
        try:
            if not await self.vectors.is_document_indexed(doc_url):
                return None
            count = await self.vectors.count_document_points(doc_url)
        except StoreError as e:
            self.logger.warning(f"Vector store probe for {doc_url} failed: {e.message}")
            return None

        await self.registry.mark_complete(doc_url, count, indexed_by=user_id)
        await self._attach(session_id, doc_url)
        self.logger.info(f"Recovered registry record for {doc_url} ({count} sections)")
        return SubmitResult(
            status=SubmitStatus.READY,
            message="Documentation already indexed",
            url=doc_url,
            from_cache=True,
        )

    async def _attach(self, session_id: str | None, doc_url: str) -> None:
        if session_id:
            await self.registry.attach_to_session(session_id, doc_url)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def run_job(self, job: CrawlJob) -> CrawlJob:
        """
        Run a claimed job to a terminal state under the job time budget.

        Never raises for pipeline failures; the job and the document record
        end up ``failed`` with a readable message instead.
        """
        timeout = self.settings.job_timeout_seconds
        try:
            return await asyncio.wait_for(self._execute(job), timeout=timeout)
        except asyncio.CancelledError:
            # Release the URL claim before the task dies
            await asyncio.shield(self._fail(job, JOB_CANCELLED_MESSAGE))
            raise
        except TimeoutError:
            error = JobTimeoutError(f"Job timed out after {timeout:.0f} seconds")
            return await self._fail(job, error.message)
        except DocIndexError as e:
            return await self._fail(job, e.message)
        except Exception as e:
            self.logger.exception(f"Job {job.job_id} crashed: {e}")
            return await self._fail(job, f"Unexpected error: {e}")

    async def _execute(self, job: CrawlJob) -> CrawlJob:
        retries = self.settings.step_retries
        delay = self.settings.step_retry_delay

        job = await self._transition(job, JobStatus.DISCOVERING, "Discovering pages", 0)
        urls = await retry_call(
            self._discover,
            job.url,
            max_retries=retries,
            delay=delay,
            exceptions=(DocIndexError,),
            label=f"discovery for {job.url}",
        )
        job = await self._transition(
            job,
            JobStatus.CRAWLING,
            f"Found {len(urls)} pages",
            DISCOVERY_PROGRESS_SHARE,
            pages_found=len(urls),
        )

        crawl = await self._crawl_pages(job, urls)
        fetch_stats = crawl.fetcher_stats
        crawl_method = CrawlMethod.from_counts(
            fetch_stats.get("primary_pages", 0), fetch_stats.get("fallback_pages", 0)
        )
        stats: dict[str, Any] = {
            "pages": len(urls),
            "pages_processed": crawl.pages_processed,
            "sections_extracted": len(crawl.sections),
            "firecrawl_pages": fetch_stats.get("primary_pages", 0),
            "manual_pages": fetch_stats.get("fallback_pages", 0),
            "markdown_extractions": crawl.markdown_pages,
            "html_extractions": crawl.html_pages,
            "crawl_method": crawl_method.value,
            "fetcher": fetch_stats,
        }

        if not crawl.sections:
            stats["sections_deduplicated"] = 0
            return await self._complete(job, 0, crawl_method, stats, NO_CONTENT_MESSAGE)

        sections = self.deduplicator.deduplicate(crawl.sections)
        stats["sections_deduplicated"] = len(sections)
        job = await self._transition(
            job,
            JobStatus.EMBEDDING,
            f"Embedding {len(sections)} of {len(crawl.sections)} sections",
            EMBEDDING_PROGRESS_START,
            pages_processed=crawl.pages_processed,
            sections_extracted=len(crawl.sections),
            sections_deduplicated=len(sections),
            crawl_method=crawl_method.value,
        )
        indexed = await retry_call(
            self._store_sections,
            sections,
            job.user_id,
            max_retries=retries,
            delay=delay,
            exceptions=(StoreError,),
            label=f"embedding for {job.url}",
        )
        stats.update(
            {
                "sections_stored": indexed.stored,
                "total_tokens": indexed.total_tokens,
                "failed_batches": indexed.failed_batches,
            }
        )
        message = f"Indexed {indexed.stored} sections from {crawl.pages_processed} pages"
        return await self._complete(job, indexed.stored, crawl_method, stats, message)

    async def _discover(self, url: str) -> list[str]:
        async with self._discoverer_factory() as discoverer:
            return await discoverer.discover(url, self.settings.max_pages)

    async def _crawl_pages(self, job: CrawlJob, urls: list[str]) -> CrawlOutcome:
        """Fetch and extract every page with bounded concurrency, merging after all settle."""
        done = 0
        total = len(urls)

        async with self._fetcher_factory() as fetcher:

            async def worker(_index: int, url: str) -> PageOutcome:
                nonlocal done
                try:
                    outcome = await retry_call(
                        self._process_page,
                        fetcher,
                        url,
                        job.url,
                        max_retries=self.settings.step_retries,
                        delay=self.settings.step_retry_delay,
                        exceptions=(FetchError, httpx.HTTPError),
                        label=f"page {url}",
                    )
                except (FetchError, httpx.HTTPError) as e:
                    self.logger.warning(f"Skipping {url}: {e}")
                    outcome = PageOutcome(url=url)

                done += 1
                percentage = DISCOVERY_PROGRESS_SHARE + round(done / total * CRAWL_PROGRESS_SHARE)
                await self._emit(
                    job,
                    JobStatus.CRAWLING,
                    f"Processed {done}/{total} pages",
                    percentage,
                    stats={"sections": len(outcome.sections)},
                )
                if self.settings.inter_request_delay > 0:
                    await asyncio.sleep(self.settings.inter_request_delay)
                return outcome

            outcomes = await gather_bounded(
                urls, worker, max_concurrency=self.settings.page_concurrency
            )
            # Read before the fetcher releases its credential pool
            fetcher_stats = fetcher.get_stats()

        sections = [section for outcome in outcomes for section in outcome.sections]
        return CrawlOutcome(
            sections=sections,
            pages_processed=len([o for o in outcomes if o.content_type is not None]),
            markdown_pages=len([o for o in outcomes if o.content_type == ContentType.MARKDOWN]),
            html_pages=len([o for o in outcomes if o.content_type == ContentType.HTML]),
            fetcher_stats=fetcher_stats,
        )

    async def _process_page(self, fetcher: PageFetcher, url: str, base_url: str) -> PageOutcome:
        fetched: FetchResult | None = await fetcher.fetch(url)
        if fetched is None:
            return PageOutcome(url=url)
        sections = self.extractor.extract(
            fetched.content, fetched.content_type, fetched.url, base_url
        )
        self.logger.debug(
            f"{url}: {len(sections)} sections ({fetched.method.value}, "
            f"{fetched.content_type.value})"
        )
        return PageOutcome(url=url, sections=sections, content_type=fetched.content_type)

    async def _store_sections(self, sections: list[Section], user_id: str) -> IndexingResult:
        result = await self.writer.write(sections, indexed_by=user_id)
        if result.stored == 0 and result.failed_batches:
            raise StoreError(f"All {result.failed_batches} batches failed: {result.errors[-1]}")
        return result

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        job: CrawlJob,
        status: JobStatus,
        message: str,
        percentage: int,
        stats: dict[str, Any] | None = None,
        **fields: Any,
    ) -> CrawlJob:
        updated = await self.registry.update_job(job.job_id, status=status, **fields)
        job = updated or job.model_copy(update={"status": status, **fields})
        await self._emit(job, status, message, percentage, stats=stats)
        return job

    async def _complete(
        self,
        job: CrawlJob,
        stored: int,
        crawl_method: CrawlMethod,
        stats: dict[str, Any],
        message: str,
    ) -> CrawlJob:
        await self.registry.mark_complete(
            job.url,
            stored,
            crawl_method=crawl_method.value,
            job_id=job.job_id,
            indexed_by=job.user_id,
        )
        await self._attach(job.session_id, job.url)
        job = await self._transition(
            job,
            JobStatus.COMPLETE,
            message,
            100,
            stats=stats,
            pages_processed=stats["pages_processed"],
            sections_extracted=stats["sections_extracted"],
            sections_deduplicated=stats["sections_deduplicated"],
            sections_stored=stored,
            crawl_method=crawl_method.value,
        )
        self.logger.info(f"Job {job.job_id} complete: {message}")
        return job

    async def _fail(self, job: CrawlJob, error: str) -> CrawlJob:
        self.logger.error(f"Job {job.job_id} for {job.url} failed: {error}")
        try:
            await self.registry.mark_failed(job.url, error)
            updated = await self.registry.update_job(
                job.job_id, status=JobStatus.FAILED, error=error
            )
        except StoreError as e:
            self.logger.error(f"Could not record failure of job {job.job_id}: {e.message}")
            updated = None
        job = updated or job.model_copy(update={"status": JobStatus.FAILED, "error": error})
        await self._emit(job, JobStatus.FAILED, error, None)
        return job

    async def _emit(
        self,
        job: CrawlJob,
        status: JobStatus,
        message: str,
        percentage: int | None,
        stats: dict[str, Any] | None = None,
    ) -> None:
        await self.progress.publish(
            ProgressEvent(
                job_id=job.job_id,
                url=job.url,
                status=status,
                message=message,
                percentage=percentage,
                stats=stats,
                session_id=job.session_id,
            )
        )
