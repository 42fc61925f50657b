"""
Vector store service over the Qdrant HTTP API.

Points for every indexed document share one collection; documents are told
apart by payload fields (``baseUrl``, ``sourceUrl``, ``indexedBy``), never by
collection.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from ..clients.qdrant_http_client import QdrantClient
from ..models.sections import EmbeddedPoint, SearchHit
from ..settings import DocIndexSettings, get_settings
from .exceptions import StoreError
from .mixins import AsyncServiceBase

_PAYLOAD_INDEXES = ("baseUrl", "indexedBy")
_SCROLL_PAGE_SIZE = 256


def _match(key: str, value: str) -> dict[str, Any]:
    return {"must": [{"key": key, "match": {"value": value}}]}


class VectorService(AsyncServiceBase):
    """Collection management, batch upserts, similarity search and payload scans."""

    def __init__(
        self,
        settings: DocIndexSettings | None = None,
        client: QdrantClient | Any | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or get_settings()
        self.collection = self.settings.qdrant_collection
        self._owns_client = client is None
        api_key = self.settings.qdrant_api_key
        self.client = client or QdrantClient(
            base_url=self.settings.qdrant_url,
            api_key=api_key.get_secret_value() if api_key else None,
            timeout_s=self.settings.qdrant_timeout,
        )

    async def _initialize(self) -> None:
        await self.ensure_collection()

    async def _cleanup(self) -> None:
        if self._owns_client:
            await self.client.close()

    async def _health_check(self) -> bool:
        return bool(await self.client.health())

    async def ensure_collection(self) -> bool:
        """Create the collection and its payload indexes when missing."""
        try:
            created = await self.client.ensure_collection(
                self.collection,
                size=self.settings.qdrant_vector_size,
                distance=self.settings.qdrant_distance.value,
            )
            if created:
                self.logger.info(
                    f"Created collection {self.collection} "
                    f"({self.settings.qdrant_vector_size} dims, "
                    f"{self.settings.qdrant_distance.value})"
                )
                for field_name in _PAYLOAD_INDEXES:
                    await self.client.create_payload_index(self.collection, field_name)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Failed to prepare collection {self.collection}: {e}", e) from e
        return bool(created)

    async def upsert_points(self, points: list[EmbeddedPoint]) -> int:
        """Upsert one batch and wait for it to be searchable."""
        if not points:
            return 0
        try:
            await self.client.upsert(
                self.collection,
                [point.to_point() for point in points],
                wait=self.settings.qdrant_upsert_wait,
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Upsert of {len(points)} points failed: {e}", e) from e
        return len(points)

    async def search(self, vector: list[float], limit: int) -> list[SearchHit]:
        """Unfiltered similarity search, best score first."""
        try:
            response = await self.client.search(
                self.collection, vector=vector, limit=limit, with_payload=True
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Vector search failed: {e}", e) from e

        hits = [SearchHit.from_point(item) for item in response.get("result") or []]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    async def is_document_indexed(self, base_url: str) -> bool:
        """True when at least one stored point belongs to ``base_url``."""
        try:
            response = await self.client.scroll_points(
                self.collection,
                limit=1,
                with_payload=False,
                query_filter=_match("baseUrl", base_url),
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Failed to probe points for {base_url}: {e}", e) from e
        return bool((response.get("result") or {}).get("points"))

    async def list_user_documents(self, user_id: str) -> list[dict[str, Any]]:
        """
        Documents indexed by a user, grouped by base URL.

        Returns:
            One entry per base URL with name, section count and latest index time
        """
        documents: dict[str, dict[str, Any]] = {}
        async for payload in self._scroll_payloads(
            _match("indexedBy", user_id), ["baseUrl", "docName", "indexedAt"]
        ):
            base_url = payload.get("baseUrl")
            if not base_url:
                continue
            entry = documents.setdefault(
                base_url,
                {
                    "base_url": base_url,
                    "name": payload.get("docName") or "",
                    "section_count": 0,
                    "last_indexed": None,
                },
            )
            entry["section_count"] += 1
            indexed_at = payload.get("indexedAt")
            if indexed_at and (entry["last_indexed"] is None or indexed_at > entry["last_indexed"]):
                entry["last_indexed"] = indexed_at
        return sorted(documents.values(), key=lambda d: d["base_url"])

    async def count_document_points(self, base_url: str) -> int:
        try:
            return await self.client.count_points(
                self.collection, query_filter=_match("baseUrl", base_url)
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Failed to count points for {base_url}: {e}", e) from e

    async def get_collection_info(self) -> dict[str, Any]:
        try:
            data = await self.client.get_collection(self.collection)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise StoreError(f"Failed to read collection {self.collection}: {e}", e) from e
        result = data.get("result") or {}
        return {
            "name": self.collection,
            "status": result.get("status"),
            "points_count": result.get("points_count"),
            "vector_size": self.settings.qdrant_vector_size,
            "distance": self.settings.qdrant_distance.value,
        }

    async def _scroll_payloads(
        self, query_filter: dict[str, Any], fields: list[str]
    ) -> AsyncIterator[dict[str, Any]]:
        offset: Any = None
        while True:
            try:
                response = await self.client.scroll_points(
                    self.collection,
                    limit=_SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=fields,
                    query_filter=query_filter,
                )
            except (aiohttp.ClientError, TimeoutError) as e:
                raise StoreError(f"Payload scroll failed: {e}", e) from e

            result = response.get("result") or {}
            for point in result.get("points") or []:
                yield point.get("payload") or {}
            offset = result.get("next_page_offset")
            if offset is None:
                break
