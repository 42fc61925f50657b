"""
Core business logic services for docindex_mcp.

The crawl orchestrator and the process runtime import the processing steps,
so they are imported from their own modules rather than re-exported here.
"""

from .embeddings import EmbeddingService
from .indexing import EmbeddingWriter
from .progress import CompositeProgressSink, LoggingProgressSink, ProgressHub
from .rag import RagService
from .vectors import VectorService

__all__ = [
    "CompositeProgressSink",
    "EmbeddingService",
    "EmbeddingWriter",
    "LoggingProgressSink",
    "ProgressHub",
    "RagService",
    "VectorService",
]
