"""
Retrieval service: single-document search, multi-document ranking and
query-target narrowing over the shared vector collection.

Document filtering happens in application space after an inflated search,
never as an index filter, so attribution tolerates URL drift.
"""

from __future__ import annotations

from typing import Any

from ..constants import MIN_MULTI_DOC_SEARCH_LIMIT, MIN_PER_DOC_QUOTA, MULTI_DOC_LIMIT_FACTOR
from ..models.sections import QueryTargets, RankedResults, SearchHit
from ..settings import DocIndexSettings, get_settings
from .embeddings import EmbeddingService
from .logging import get_logger
from .matching import assign_document, matches_document
from .mixins import AsyncServiceBase
from .targeting import identify_target_docs
from .vectors import VectorService

logger = get_logger(__name__)

_SYNONYMS: dict[str, tuple[str, ...]] = {
    "install": ("setup", "add", "npm install", "yarn add", "installation", "getting started"),
    "column": ("field", "property", "attribute", "key"),
    "delete": ("remove", "drop", "destroy", "erase"),
    "create": ("make", "add", "new", "build", "generate"),
    "update": ("modify", "change", "edit", "alter", "patch"),
    "get": ("fetch", "retrieve", "find", "select", "query"),
    "error": ("bug", "issue", "problem", "exception", "fail"),
    "config": ("configuration", "settings", "setup", "options"),
    "how to": ("tutorial", "guide", "example", "steps"),
    "use": ("usage", "utilize", "implement", "apply"),
    "start": ("begin", "initialize", "setup", "getting started"),
    "api": ("endpoint", "REST", "service", "interface"),
    "auth": ("authentication", "authorization", "login", "security"),
}
_MAX_QUERY_VARIATIONS = 5


def per_doc_quota(num_docs: int, budget: int) -> int:
    """Fair per-document share: ``max(3, floor(budget / num_docs))``."""
    return max(MIN_PER_DOC_QUOTA, budget // max(1, num_docs))


def multi_doc_search_limit(num_docs: int, quota: int) -> int:
    return max(MIN_MULTI_DOC_SEARCH_LIMIT, num_docs * quota * MULTI_DOC_LIMIT_FACTOR)


def bucket_hits(
    hits: list[SearchHit], doc_urls: list[str]
) -> tuple[dict[str, list[SearchHit]], int]:
    """Group hits by owning document; returns buckets and the unmatched count."""
    buckets: dict[str, list[SearchHit]] = {url: [] for url in doc_urls}
    unmatched = 0
    for hit in hits:
        owner = assign_document(hit, doc_urls)
        if owner is None:
            unmatched += 1
        else:
            buckets[owner].append(hit)
    return buckets, unmatched


def rank_multi_doc(
    hits: list[SearchHit],
    doc_urls: list[str],
    *,
    quota: int,
    min_score: float,
    max_results: int,
) -> tuple[list[SearchHit], int]:
    """
    Two-level selection across documents.

    Each document keeps its top ``quota`` hits by score; the concatenation is
    then thresholded at ``min_score``, sorted by score and capped at
    ``max_results``. A sparsely represented document keeps its best hits even
    when a dense document has many higher-scoring ones.

    Returns:
        (selected hits, number of hits no document claimed)
    """
    buckets, unmatched = bucket_hits(hits, doc_urls)
    selected: list[SearchHit] = []
    for doc_hits in buckets.values():
        doc_hits.sort(key=lambda hit: hit.score, reverse=True)
        selected.extend(doc_hits[:quota])

    selected = [hit for hit in selected if hit.score >= min_score]
    selected.sort(key=lambda hit: hit.score, reverse=True)
    return selected[:max_results], unmatched


def expand_query(query: str) -> list[str]:
    """The query plus synonym variations, at most five, original first."""
    variations = [query]
    lowered = query.lower()
    words = lowered.split()
    for term, synonyms in _SYNONYMS.items():
        present = term in lowered if " " in term else term in words
        if not present:
            continue
        start = lowered.find(term)
        for synonym in synonyms:
            variation = query[:start] + synonym + query[start + len(term) :]
            if variation not in variations:
                variations.append(variation)
    return variations[:_MAX_QUERY_VARIATIONS]


class RagService(AsyncServiceBase):
    """
    Query-time retrieval over indexed documentation.

    Owns an embedding service and a vector service unless they are injected;
    injected services are not initialized or cleaned up here.
    """

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        embedding_service: EmbeddingService | None = None,
        vector_service: VectorService | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self._owns_services = embedding_service is None and vector_service is None
        self.embeddings = embedding_service or EmbeddingService(self.settings)
        self.vectors = vector_service or VectorService(self.settings)

    async def _initialize(self) -> None:
        if self._owns_services:
            await self.embeddings.initialize()
            await self.vectors.initialize()

    async def _cleanup(self) -> None:
        if self._owns_services:
            await self.embeddings.cleanup()
            await self.vectors.cleanup()

    async def health_check(self) -> dict[str, bool]:  # type: ignore[override]
        return {
            "embedding": await self.embeddings.health_check(),
            "vector": await self.vectors.health_check(),
        }

    async def search(
        self, query: str, limit: int = 5, doc: str | None = None
    ) -> list[SearchHit]:
        """
        Search one document, or the whole collection when ``doc`` is None.

        With a document filter the index is asked for ``limit`` times the
        filter multiplier, then hits are attributed and truncated.
        """
        vector = await self.embeddings.embed_query(query)
        search_limit = limit * self.settings.search_filter_multiplier if doc else limit
        hits = await self.vectors.search(vector, search_limit)
        if doc:
            hits = [hit for hit in hits if matches_document(hit, doc)]
        return hits[:limit]

    async def search_documents(
        self,
        query: str,
        doc_urls: list[str],
        *,
        quota: int | None = None,
        targets: QueryTargets | None = None,
        max_results: int | None = None,
    ) -> RankedResults:
        """
        Balanced search across several documents with one inflated index query.

        ``max_results`` caps the final list and defaults to the configured
        result budget.
        """
        if not doc_urls:
            return RankedResults(targets=targets)

        quota = quota or per_doc_quota(len(doc_urls), self.settings.multi_doc_budget)
        vector = await self.embeddings.embed_query(query)
        hits = await self.vectors.search(vector, multi_doc_search_limit(len(doc_urls), quota))

        ranked, unmatched = rank_multi_doc(
            hits,
            doc_urls,
            quota=quota,
            min_score=self.settings.min_score,
            max_results=max_results or self.settings.max_results,
        )
        if unmatched:
            logger.warning(
                f"{unmatched}/{len(hits)} hits matched none of {len(doc_urls)} documents"
            )
        logger.info(
            f"Multi-document search returned {len(ranked)} hits "
            f"(quota {quota} across {len(doc_urls)} documents)"
        )
        return RankedResults(hits=ranked, targets=targets, unmatched_hits=unmatched)

    async def search_session(self, query: str, doc_urls: list[str]) -> RankedResults:
        """
        Search the documents attached to a session.

        When the query names some of the documents with enough confidence, the
        search narrows to them with the larger targeted quota.
        """
        targets = identify_target_docs(query, doc_urls, self.settings)
        if targets.matched and targets.confidence > self.settings.target_confidence_threshold:
            return await self.search_documents(
                query,
                targets.target_docs,
                quota=self.settings.targeted_per_doc_quota,
                targets=targets,
            )
        return await self.search_documents(query, doc_urls, targets=targets)

    async def search_across_documents(
        self, query: str, doc_urls: list[str], per_doc: int = 5
    ) -> dict[str, list[SearchHit]]:
        """Top hits for each document separately, for side-by-side comparison."""
        vector = await self.embeddings.embed_query(query)
        limit = multi_doc_search_limit(len(doc_urls), per_doc)
        hits = await self.vectors.search(vector, limit)
        buckets, _unmatched = bucket_hits(hits, doc_urls)
        return {
            url: [hit for hit in doc_hits if hit.score >= self.settings.min_score][:per_doc]
            for url, doc_hits in buckets.items()
        }

    async def search_with_expansion(
        self, query: str, limit: int = 5, doc: str | None = None
    ) -> list[SearchHit]:
        """Search every query variation and keep the best score per (page, heading)."""
        best: dict[tuple[str, str], SearchHit] = {}
        for variation in expand_query(query):
            for hit in await self.search(variation, limit * 2, doc):
                key = (hit.source_url, hit.section.heading)
                if key not in best or best[key].score < hit.score:
                    best[key] = hit
        merged = sorted(best.values(), key=lambda hit: hit.score, reverse=True)
        return merged[:limit]

    async def get_stats(self) -> dict[str, Any]:
        return {
            "collection": await self.vectors.get_collection_info(),
            "embedding": await self.embeddings.get_model_info(),
        }
