"""
Batch writer that embeds sections and stores them as vector points.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..models.sections import EmbeddedPoint, Section
from ..settings import DocIndexSettings, get_settings
from .embeddings import EmbeddingService, build_embedding_input
from .exceptions import DocIndexError
from .logging import get_class_logger
from .utils import estimate_tokens
from .vectors import VectorService


@dataclass
class IndexingResult:
    stored: int = 0
    total_tokens: int = 0
    failed_batches: int = 0
    errors: list[str] = field(default_factory=list)


class EmbeddingWriter:
    """
    Embeds sections in fixed-size batches and upserts each batch.

    A batch that fails to embed or store is logged and skipped; later batches
    still run, so a partial index is preferred over none.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        vector_service: VectorService,
        settings: DocIndexSettings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.embeddings = embedding_service
        self.vectors = vector_service
        self.logger = get_class_logger(self)

    async def write(
        self,
        sections: list[Section],
        indexed_by: str | None = None,
    ) -> IndexingResult:
        """
        Embed and store sections.

        Args:
            sections: Deduplicated sections of one crawl
            indexed_by: User recorded on every point

        Returns:
            Stored point count, summed token estimate and failed batch count
        """
        result = IndexingResult()
        batch_size = self.settings.embedding_batch_size
        total_batches = (len(sections) + batch_size - 1) // batch_size

        for batch_number, start in enumerate(range(0, len(sections), batch_size), start=1):
            batch = sections[start : start + batch_size]
            try:
                points = await self._embed_batch(batch, indexed_by)
                await self.vectors.upsert_points(points)
            except DocIndexError as e:
                result.failed_batches += 1
                result.errors.append(e.message)
                self.logger.error(
                    f"Batch {batch_number}/{total_batches} ({len(batch)} sections) "
                    f"failed: {e.message}"
                )
                continue

            result.stored += len(points)
            result.total_tokens += sum(point.tokens for point in points)
            self.logger.info(
                f"Stored batch {batch_number}/{total_batches}: {len(points)} sections"
            )

        return result

    async def _embed_batch(
        self, batch: list[Section], indexed_by: str | None
    ) -> list[EmbeddedPoint]:
        texts = [build_embedding_input(section) for section in batch]
        vectors = await self.embeddings.embed_texts(texts)
        indexed_at = datetime.now(UTC)
        return [
            EmbeddedPoint(
                id=str(uuid.uuid4()),
                vector=vector,
                section=section,
                tokens=estimate_tokens(section.content, self.settings.word_to_token_ratio),
                indexed_at=indexed_at,
                indexed_by=indexed_by,
            )
            for section, vector in zip(batch, vectors, strict=True)
        ]
