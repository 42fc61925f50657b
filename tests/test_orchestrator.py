"""
End-to-end crawl job tests: submission semantics, the job state machine and
registry/vector-store consistency, over mocked HTTP and in-memory services.
"""

import asyncio

import pytest

from docindex_mcp.core.embeddings import EmbeddingService
from docindex_mcp.core.orchestrator import (
    JOB_CANCELLED_MESSAGE,
    JOB_INTERRUPTED_MESSAGE,
    NO_CONTENT_MESSAGE,
    CrawlOrchestrator,
)
from docindex_mcp.core.progress import ProgressHub
from docindex_mcp.core.rag import RagService
from docindex_mcp.models.crawl import DocumentStatus, JobStatus, SubmitStatus
from docindex_mcp.models.sections import EmbeddedPoint, Section
from docindex_mcp.processing.page_fetcher import PageFetcher
from docindex_mcp.processing.url_discovery import URLDiscoverer

from .conftest import FakeEmbeddingClient, bag_of_words, make_http, make_settings, urlset

ROOT = "https://example.dev/docs/"
DOC_URL = "https://example.dev/docs"
INSTALL_URL = "https://example.dev/docs/install"
USAGE_URL = "https://example.dev/docs/usage"

INSTALL_HTML = (
    "<html><head><title>Install</title></head><body><main>"
    '<h2 id="installation">Installation</h2>'
    "<p>Install the package.</p>"
    '<pre><code class="language-bash">npm install example-lib</code></pre>'
    "</main></body></html>"
)
USAGE_HTML = (
    "<html><head><title>Usage</title></head><body><main>"
    "<h2>Usage</h2>"
    "<p>Call the client.</p>"
    '<pre><code class="language-python">from example_lib import Client\n'
    "Client().run()</code></pre>"
    "</main></body></html>"
)
EMPTY_HTML = "<html><body><main><h2>Misc</h2><p>Nothing here.</p></main></body></html>"

SITE = {
    "https://example.dev/docs/sitemap.xml": urlset(INSTALL_URL, USAGE_URL),
    INSTALL_URL: INSTALL_HTML,
    USAGE_URL: USAGE_HTML,
}


class GatedDiscoverer:
    """Discoverer that holds the job in the discovering step until released."""

    def __init__(self, gate: asyncio.Event, urls: list[str]):
        self.gate = gate
        self.urls = urls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def discover(self, url: str, max_pages: int | None = None) -> list[str]:
        await self.gate.wait()
        return list(self.urls)


@pytest.fixture
def crawl_settings(tmp_path):
    return make_settings(tmp_path, sitemap_min_urls=1)


@pytest.fixture
async def build(crawl_settings, registry, embedding_service, vector_service):
    """Factory for orchestrators wired to the mocked site; closes them afterwards."""
    created: list[CrawlOrchestrator] = []

    def _build(
        routes=None,
        *,
        settings=None,
        discoverer_factory=None,
        embeddings=None,
    ) -> tuple[CrawlOrchestrator, ProgressHub]:
        settings = settings or crawl_settings
        site = SITE if routes is None else routes
        hub = ProgressHub()
        orchestrator = CrawlOrchestrator(
            registry,
            embeddings or embedding_service,
            vector_service,
            settings,
            progress_sink=hub,
            discoverer_factory=discoverer_factory
            or (lambda: URLDiscoverer(settings, http=make_http(site))),
            fetcher_factory=lambda: PageFetcher(
                settings,
                api_keys=[],
                firecrawl_http=make_http({}),
                web_http=make_http(site),
            ),
        )
        created.append(orchestrator)
        return orchestrator, hub

    yield _build
    for orchestrator in created:
        await orchestrator.close()


class TestCrawlJobs:
    """Full pipeline runs."""

    async def test_crawl_indexes_and_serves_search(
        self, build, registry, embedding_service, vector_service, crawl_settings
    ):
        orchestrator, hub = build()

        submitted = await orchestrator.submit_crawl(ROOT, "user-1", "session-1")
        assert submitted.status == SubmitStatus.QUEUED
        assert submitted.url == DOC_URL

        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE
        assert event.percentage == 100
        assert event.stats["pages_processed"] == 2
        assert event.stats["sections_stored"] == 2
        assert event.stats["crawl_method"] == "fallback"
        assert event.stats["manual_pages"] == 2

        document = await registry.get_document(DOC_URL)
        assert document.status == DocumentStatus.COMPLETE
        assert document.section_count == 2
        assert document.indexed_by == "user-1"
        assert document.crawl_method == "fallback"

        job = await registry.get_job(submitted.job_id)
        assert job.status == JobStatus.COMPLETE
        assert job.pages_found == 2
        assert job.sections_extracted == 2
        assert job.sections_deduplicated == 2
        assert job.sections_stored == 2

        assert await registry.session_documents("session-1") == [DOC_URL]
        assert await vector_service.count_document_points(DOC_URL) == 2

        rag = RagService(
            crawl_settings, embedding_service=embedding_service, vector_service=vector_service
        )
        hits = await rag.search("npm install example-lib", limit=5, doc=DOC_URL)
        assert hits[0].section.heading == "Installation"
        assert hits[0].source_url == "https://example.dev/docs/install#installation"

    async def test_job_records_section_counts_per_stage(self, build, registry, tmp_path):
        settings = make_settings(tmp_path, sitemap_min_urls=1, max_sections=1)
        orchestrator, hub = build(settings=settings)

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)

        assert event.status == JobStatus.COMPLETE
        job = await registry.get_job(submitted.job_id)
        assert job.pages_found == 2
        assert job.pages_processed == 2
        assert job.sections_extracted == 2
        assert job.sections_deduplicated == 1
        assert job.sections_stored == 1

    async def test_completed_document_served_from_cache(self, build, registry):
        orchestrator, hub = build()
        first = await orchestrator.submit_crawl(ROOT, "user-1")
        await hub.wait_for_terminal(first.job_id, timeout=10)

        again = await orchestrator.submit_crawl("https://EXAMPLE.dev/docs", "user-2", "s-2")

        assert again.status == SubmitStatus.READY
        assert again.from_cache is True
        assert again.job_id == first.job_id
        assert await registry.session_documents("s-2") == [DOC_URL]

    async def test_no_content_still_completes(self, build, registry, qdrant):
        routes = {
            "https://example.dev/docs/sitemap.xml": urlset(INSTALL_URL),
            INSTALL_URL: EMPTY_HTML,
        }
        orchestrator, hub = build(routes)

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)

        assert event.status == JobStatus.COMPLETE
        assert event.message == NO_CONTENT_MESSAGE
        document = await registry.get_document(DOC_URL)
        assert document.status == DocumentStatus.COMPLETE
        assert document.section_count == 0
        assert qdrant.points == {}

    async def test_discovery_failure_fails_job_and_allows_retry(self, build, registry):
        orchestrator, hub = build({})

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)

        assert event.status == JobStatus.FAILED
        assert event.message == "No pages found for https://example.dev/docs"
        document = await registry.get_document(DOC_URL)
        assert document.status == DocumentStatus.FAILED
        assert (await registry.get_job(submitted.job_id)).status == JobStatus.FAILED

        retry_orchestrator, retry_hub = build()
        retried = await retry_orchestrator.submit_crawl(ROOT, "user-2")
        assert retried.status == SubmitStatus.QUEUED
        assert retried.job_id != submitted.job_id
        event = await retry_hub.wait_for_terminal(retried.job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE

    async def test_total_embedding_failure_fails_job(self, build, registry, crawl_settings):
        failing = EmbeddingService(
            crawl_settings, client=FakeEmbeddingClient(fail_calls=set(range(1, 20)))
        )
        orchestrator, hub = build(embeddings=failing)

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)

        assert event.status == JobStatus.FAILED
        assert event.message.startswith("All 1 batches failed")
        assert (await registry.get_document(DOC_URL)).status == DocumentStatus.FAILED

    async def test_job_timeout(self, build, registry, tmp_path):
        settings = make_settings(tmp_path, job_timeout_seconds=0.2)
        gate = asyncio.Event()
        orchestrator, hub = build(
            settings=settings,
            discoverer_factory=lambda: GatedDiscoverer(gate, [INSTALL_URL]),
        )

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)

        assert event.status == JobStatus.FAILED
        assert "timed out" in event.message
        assert (await registry.get_document(DOC_URL)).status == DocumentStatus.FAILED


class TestSubmission:
    """One active job per URL and session attachment."""

    async def test_second_submit_joins_running_job(self, build, registry):
        gate = asyncio.Event()
        orchestrator, hub = build(
            discoverer_factory=lambda: GatedDiscoverer(gate, [INSTALL_URL, USAGE_URL])
        )

        first = await orchestrator.submit_crawl(ROOT, "user-1", "s-1")
        second = await orchestrator.submit_crawl(ROOT, "user-2", "s-2")

        assert first.status == SubmitStatus.QUEUED
        assert second.status == SubmitStatus.INDEXING
        assert second.job_id == first.job_id
        assert orchestrator.tasks.active_count == 1
        # the joining session is attached right away, the owner's at completion
        assert await registry.session_documents("s-2") == [DOC_URL]
        assert await registry.session_documents("s-1") == []

        gate.set()
        event = await hub.wait_for_terminal(first.job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE
        assert await registry.session_documents("s-1") == [DOC_URL]

    async def test_concurrent_submissions_start_one_job(self, build):
        gate = asyncio.Event()
        orchestrator, hub = build(
            discoverer_factory=lambda: GatedDiscoverer(gate, [INSTALL_URL])
        )

        results = await asyncio.gather(
            *(orchestrator.submit_crawl(ROOT, f"user-{i}") for i in range(3))
        )

        queued = [r for r in results if r.status == SubmitStatus.QUEUED]
        assert len(queued) == 1
        assert {r.job_id for r in results} == {queued[0].job_id}
        assert orchestrator.tasks.active_count == 1

        gate.set()
        event = await hub.wait_for_terminal(queued[0].job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE

    async def test_cancelled_job_releases_url(self, build, registry):
        gate = asyncio.Event()
        orchestrator, hub = build(
            discoverer_factory=lambda: GatedDiscoverer(gate, [INSTALL_URL])
        )
        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        await asyncio.sleep(0.05)

        await orchestrator.close()

        document = await registry.get_document(DOC_URL)
        assert document.status == DocumentStatus.FAILED
        assert document.error == JOB_CANCELLED_MESSAGE
        job = await registry.get_job(submitted.job_id)
        assert job.status == JobStatus.FAILED
        assert hub.latest(submitted.job_id).status == JobStatus.FAILED

        restarted, restarted_hub = build()
        again = await restarted.submit_crawl(ROOT, "user-1")
        assert again.status == SubmitStatus.QUEUED
        event = await restarted_hub.wait_for_terminal(again.job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE

    async def test_interrupted_claims_recovered_at_startup(self, build, registry):
        """A claim whose process died is released before new submissions."""
        await registry.claim(DOC_URL, "dead-job", "user-0")
        orchestrator, hub = build()

        assert await orchestrator.recover_interrupted() == 1
        assert (await registry.get_document(DOC_URL)).error == JOB_INTERRUPTED_MESSAGE

        submitted = await orchestrator.submit_crawl(ROOT, "user-1")
        assert submitted.status == SubmitStatus.QUEUED
        event = await hub.wait_for_terminal(submitted.job_id, timeout=10)
        assert event.status == JobStatus.COMPLETE

    async def test_registry_healed_from_vector_store(
        self, build, registry, vector_service, crawl_settings
    ):
        points = [
            EmbeddedPoint(
                id=f"00000000-0000-0000-0000-00000000000{i}",
                vector=bag_of_words(f"section {i}", crawl_settings.embedding_dimension),
                section=Section(content=f"section {i}", base_url=DOC_URL),
                indexed_by="user-0",
            )
            for i in range(3)
        ]
        await vector_service.upsert_points(points)
        orchestrator, _hub = build()

        result = await orchestrator.submit_crawl(ROOT, "user-1", "s-1")

        assert result.status == SubmitStatus.READY
        assert result.from_cache is True
        assert orchestrator.tasks.active_count == 0
        document = await registry.get_document(DOC_URL)
        assert document.status == DocumentStatus.COMPLETE
        assert document.section_count == 3
        assert await registry.session_documents("s-1") == [DOC_URL]
