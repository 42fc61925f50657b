"""
Embedding service backed by a TEI (or OpenAI-compatible) endpoint.
"""

from __future__ import annotations

import re
from typing import Any

from ..clients.tei_client import TEIEmbeddingsClient
from ..constants import EMBEDDING_EXCERPT_CHARS
from ..models.sections import Section, SectionType
from ..settings import DocIndexSettings, get_settings
from .exceptions import EmbeddingError
from .mixins import AsyncServiceBase
from .utils import normalize_whitespace

_MD_LINK_RE = re.compile(r"\[[^\]]*?\]\([^)]*?\)")
_FENCE_RE = re.compile(r"```[\s\S]*?```")


def build_embedding_input(section: Section, excerpt_chars: int = EMBEDDING_EXCERPT_CHARS) -> str:
    """
    Compact text that represents a section for embedding.

    Heading, parent heading and a type-aware descriptor come first, followed by
    a cleaned content excerpt: Markdown links removed, fenced blocks replaced by
    the raw code, cut to ``excerpt_chars`` characters.

    Examples:
        >>> build_embedding_input(Section(content="Run it", heading="Usage"))
        "Usage usage Run it"
    """
    descriptor = (
        f"code example {section.heading}"
        if section.type == SectionType.CODE.value
        else section.heading.lower()
    )
    parts = [section.heading, section.parent_heading or "", descriptor]

    if section.content:
        cleaned = _MD_LINK_RE.sub("", section.content)
        cleaned = _FENCE_RE.sub(lambda _m: section.code_snippet or "", cleaned)
        parts.append(cleaned[:excerpt_chars])

    return normalize_whitespace(" ".join(part for part in parts if part))


class EmbeddingService(AsyncServiceBase):
    """Turns texts into vectors, one service call per batch."""

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        client: TEIEmbeddingsClient | Any | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or TEIEmbeddingsClient(
            base_url=self.settings.tei_url,
            model=self.settings.tei_model,
            timeout_s=self.settings.tei_timeout,
            max_retries=self.settings.tei_max_retries,
        )

    async def _cleanup(self) -> None:
        if self._owns_client:
            await self.client.close()

    async def _health_check(self) -> bool:
        return bool(await self.client.health())

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch of texts with a single service call.

        Raises:
            EmbeddingError: on service failure or a vector of the wrong size
        """
        if not texts:
            return []
        vectors = await self.client.embed_texts(texts)
        expected = self.settings.embedding_dimension
        for vector in vectors:
            if len(vector) != expected:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {expected}, got {len(vector)}"
                )
        return vectors

    async def embed_query(self, query: str) -> list[float]:
        vectors = await self.embed_texts([query])
        if not vectors:
            raise EmbeddingError("Embedding service returned no vector for the query")
        return vectors[0]

    async def get_model_info(self) -> dict[str, Any]:
        return {
            "url": self.settings.tei_url,
            "model": self.settings.tei_model,
            "dimension": self.settings.embedding_dimension,
            "batch_size": self.settings.embedding_batch_size,
        }
