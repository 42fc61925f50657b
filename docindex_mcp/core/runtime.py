"""
Process-wide service wiring for the MCP tools.

One registry, one pair of TEI/Qdrant services, one progress hub and one
orchestrator live for the whole server process so background crawl jobs
outlive the tool call that submitted them.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from ..db.registry import DocumentRegistry
from ..db.session import create_engine, create_session_factory, init_models
from ..settings import DocIndexSettings, get_settings
from .embeddings import EmbeddingService
from .mixins import AsyncServiceBase
from .orchestrator import CrawlOrchestrator
from .progress import CompositeProgressSink, LoggingProgressSink, ProgressHub
from .rag import RagService
from .vectors import VectorService


class DocIndexRuntime(AsyncServiceBase):
    """Owns the long-lived services; tools reach them through ``get_runtime()``."""

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        *,
        embedding_service: EmbeddingService | None = None,
        vector_service: VectorService | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self.engine = engine or create_engine(self.settings)
        self.registry = DocumentRegistry(create_session_factory(self.engine))
        self.embeddings = embedding_service or EmbeddingService(self.settings)
        self.vectors = vector_service or VectorService(self.settings)
        self.hub = ProgressHub()
        self.orchestrator = CrawlOrchestrator(
            self.registry,
            self.embeddings,
            self.vectors,
            self.settings,
            progress_sink=CompositeProgressSink(LoggingProgressSink(), self.hub),
        )
        self.rag = RagService(
            self.settings,
            embedding_service=self.embeddings,
            vector_service=self.vectors,
        )

    async def _initialize(self) -> None:
        await init_models(self.engine)
        await self.orchestrator.recover_interrupted()
        await self.embeddings.initialize()
        await self.vectors.initialize()
        await self.rag.initialize()

    async def _cleanup(self) -> None:
        await self.orchestrator.close()
        await self.rag.cleanup()
        await self.embeddings.cleanup()
        await self.vectors.cleanup()
        await self.engine.dispose()

    async def _health_check(self) -> bool:
        return await self.embeddings.health_check() and await self.vectors.health_check()


_runtime: DocIndexRuntime | None = None


async def get_runtime() -> DocIndexRuntime:
    """Get the initialized process runtime, creating it on first use."""
    global _runtime
    if _runtime is None:
        _runtime = DocIndexRuntime()
    await _runtime.initialize()
    return _runtime


async def shutdown_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.cleanup()
        _runtime = None
