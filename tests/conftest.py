"""
Shared fixtures: test settings, in-memory TEI/Qdrant stand-ins, mock HTTP
transports and a SQLite-backed registry.
"""

from __future__ import annotations

import math
import re
import zlib
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from docindex_mcp.core.embeddings import EmbeddingService
from docindex_mcp.core.exceptions import EmbeddingError
from docindex_mcp.core.http_client import AsyncHttpClient, HttpClientConfig
from docindex_mcp.core.vectors import VectorService
from docindex_mcp.db import DocumentRegistry, create_engine, create_session_factory, init_models
from docindex_mcp.settings import DocIndexSettings

TEST_DIMENSION = 64

Route = str | tuple[int, str] | Callable[[httpx.Request], httpx.Response]


def make_settings(tmp_path: Any = None, **overrides: Any) -> DocIndexSettings:
    values: dict[str, Any] = {
        "embedding_dimension": TEST_DIMENSION,
        "qdrant_vector_size": TEST_DIMENSION,
        "step_retries": 1,
        "step_retry_delay": 0.0,
        "inter_request_delay": 0.0,
        "firecrawl_key_1": None,
        "firecrawl_key_2": None,
        "firecrawl_key_3": None,
        "firecrawl_api_keys": [],
    }
    if tmp_path is not None:
        values["database_url"] = f"sqlite+aiosqlite:///{tmp_path}/registry.db"
    values.update(overrides)
    return DocIndexSettings(**values)


@pytest.fixture
def settings(tmp_path) -> DocIndexSettings:
    return make_settings(tmp_path)


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------


def route_handler(routes: dict[str, Route]) -> Callable[[httpx.Request], httpx.Response]:
    """Answer from a URL -> body map; anything unlisted is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        if isinstance(route, tuple):
            status, body = route
            return httpx.Response(status, text=body)
        return httpx.Response(200, text=route)

    return handler


def make_http(
    routes: dict[str, Route] | None = None,
    handler: Callable[[httpx.Request], httpx.Response] | None = None,
) -> AsyncHttpClient:
    transport = httpx.MockTransport(handler or route_handler(routes or {}))
    return AsyncHttpClient(HttpClientConfig(timeout=5.0, retries=1, transport=transport))


def urlset(*urls: str) -> str:
    entries = "".join(f"<url><loc>{url}</loc></url>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemap_index(*urls: str) -> str:
    entries = "".join(f"<sitemap><loc>{url}</loc></sitemap>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


# ----------------------------------------------------------------------
# Embeddings and vector store
# ----------------------------------------------------------------------


def bag_of_words(text: str, dimension: int = TEST_DIMENSION) -> list[float]:
    """Deterministic hashed bag-of-words vector, unit length."""
    vector = [0.0] * dimension
    for token in re.findall(r"\w+", text.lower()):
        vector[zlib.crc32(token.encode()) % dimension] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        vector[0] = 1.0
        return vector
    return [v / norm for v in vector]


class FakeEmbeddingClient:
    """Stands in for the TEI client; selected calls can be made to fail."""

    def __init__(self, dimension: int = TEST_DIMENSION, fail_calls: set[int] | None = None):
        self.dimension = dimension
        self.fail_calls = fail_calls or set()
        self.calls: list[list[str]] = []
        self.closed = False

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if len(self.calls) in self.fail_calls:
            raise EmbeddingError(f"embedding call {len(self.calls)} failed")
        return [bag_of_words(text, self.dimension) for text in texts]

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        self.closed = True


def _matches(payload: dict[str, Any], query_filter: dict[str, Any] | None) -> bool:
    if not query_filter:
        return True
    return all(
        payload.get(cond["key"]) == cond["match"]["value"]
        for cond in query_filter.get("must", [])
    )


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeQdrantClient:
    """In-memory collection with the subset of the Qdrant HTTP API the services use."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self.points: dict[str, dict[str, Any]] = {}
        self.payload_indexes: list[str] = []
        self.fail_upserts = False
        self.upsert_calls = 0

    async def ensure_collection(self, name: str, *, size: int, distance: str = "Cosine") -> bool:
        if name in self.collections:
            return False
        self.collections[name] = {"size": size, "distance": distance}
        return True

    async def create_payload_index(
        self, name: str, field_name: str, field_schema: str = "keyword"
    ) -> None:
        self.payload_indexes.append(field_name)

    async def upsert(
        self, name: str, points: list[dict[str, Any]], *, wait: bool = True
    ) -> dict[str, Any]:
        self.upsert_calls += 1
        if self.fail_upserts:
            raise TimeoutError("qdrant unavailable")
        for point in points:
            self.points[point["id"]] = point
        return {"status": "ok"}

    async def search(
        self, name: str, *, vector: list[float], limit: int = 5, with_payload: bool = True, **_: Any
    ) -> dict[str, Any]:
        scored = [
            {"id": pid, "score": _cosine(vector, p["vector"]), "payload": p["payload"]}
            for pid, p in self.points.items()
        ]
        scored.sort(key=lambda item: item["score"], reverse=True)
        return {"result": scored[:limit]}

    async def scroll_points(
        self,
        name: str,
        *,
        limit: int = 1,
        offset: Any = None,
        with_payload: bool | list[str] = True,
        query_filter: dict[str, Any] | None = None,
        **_: Any,
    ) -> dict[str, Any]:
        matching = [
            {"id": pid, "payload": p["payload"]}
            for pid, p in sorted(self.points.items())
            if _matches(p["payload"], query_filter)
        ]
        start = offset or 0
        page = matching[start : start + limit]
        next_offset = start + limit if start + limit < len(matching) else None
        return {"result": {"points": page, "next_page_offset": next_offset}}

    async def count_points(
        self, name: str, *, exact: bool = True, query_filter: dict[str, Any] | None = None
    ) -> int:
        return len([p for p in self.points.values() if _matches(p["payload"], query_filter)])

    async def get_collection(self, name: str) -> dict[str, Any]:
        return {"result": {"status": "green", "points_count": len(self.points)}}

    async def health(self) -> bool:
        return True

    async def close(self) -> None:
        pass


@pytest.fixture
def embedding_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def qdrant() -> FakeQdrantClient:
    return FakeQdrantClient()


@pytest.fixture
async def embedding_service(settings, embedding_client) -> EmbeddingService:
    service = EmbeddingService(settings, client=embedding_client)
    await service.initialize()
    return service


@pytest.fixture
async def vector_service(settings, qdrant) -> VectorService:
    service = VectorService(settings, client=qdrant)
    await service.initialize()
    return service


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


@pytest.fixture
async def registry(settings):
    engine = create_engine(settings)
    await init_models(engine)
    yield DocumentRegistry(create_session_factory(engine))
    await engine.dispose()
