"""
Async embeddings client for HuggingFace Text Embeddings Inference (TEI).

Speaks native TEI ``/embed`` first and OpenAI-compatible ``/v1/embeddings``
second, so an Ollama or OpenAI-style gateway can stand in for a TEI server.
Whichever route answers first is remembered for later batches.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..core.exceptions import EmbeddingError
from ..core.logging import get_logger

logger = get_logger(__name__)

_RETRYABLE = (aiohttp.ClientError, TimeoutError)


@dataclass(frozen=True)
class _Route:
    name: str
    path: str
    build_body: Callable[[list[str], str | None], dict[str, Any]]
    parse: Callable[[Any], list[list[float]]]


def _native_body(texts: list[str], _model: str | None) -> dict[str, Any]:
    return {"inputs": texts, "truncate": True}


def _openai_body(texts: list[str], model: str | None) -> dict[str, Any]:
    body: dict[str, Any] = {"input": texts}
    if model:
        body["model"] = model
    return body


def _parse_native(data: Any) -> list[list[float]]:
    # Older TEI builds wrap the matrix in {"data": ...}
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, list) and all(isinstance(row, list) for row in data):
        return data
    raise ValueError("Unexpected TEI /embed response")


def _parse_openai(data: Any) -> list[list[float]]:
    items = data.get("data") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise ValueError("Unexpected /v1/embeddings response")
    ordered = sorted(items, key=lambda item: item.get("index", 0))
    return [item["embedding"] for item in ordered if isinstance(item.get("embedding"), list)]


ROUTES = (
    _Route("tei", "/embed", _native_body, _parse_native),
    _Route("openai", "/v1/embeddings", _openai_body, _parse_openai),
)


class TEIEmbeddingsClient:
    def __init__(
        self,
        base_url: str,
        *,
        model: str | None = None,
        timeout_s: float = 15.0,
        max_retries: int = 1,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.max_retries = max(0, int(max_retries))
        self._route: _Route | None = None
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> TEIEmbeddingsClient:
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a batch with one request.

        Raises:
            EmbeddingError: when every route fails or the vector count is off
        """
        if not texts:
            return []

        routes = [self._route] if self._route else list(ROUTES)
        errors: list[str] = []
        for route in routes:
            try:
                vectors = await self._post(route, texts)
            except (*_RETRYABLE, ValueError) as e:
                errors.append(f"{route.path}: {e}")
                logger.debug(f"Embedding route {route.path} failed: {e}")
                continue
            if self._route is None:
                logger.info(f"Using {route.name} embeddings route {route.path}")
                self._route = route
            break
        else:
            raise EmbeddingError(
                f"Embedding request for {len(texts)} texts failed ({'; '.join(errors)})"
            )

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding service returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors

    async def health(self) -> bool:
        """True when the service answers its health route."""
        sess = await self._get_session()
        try:
            async with sess.get(f"{self.base_url}/health") as resp:
                return resp.status == 200
        except _RETRYABLE as e:
            logger.debug(f"TEI health check failed: {e}")
            return False

    async def _post(self, route: _Route, texts: list[str]) -> list[list[float]]:
        body = route.build_body(texts, self.model)
        for attempt in range(self.max_retries + 1):
            sess = await self._get_session()
            try:
                async with sess.post(self.base_url + route.path, json=body) as resp:
                    resp.raise_for_status()
                    return route.parse(await resp.json())
            except _RETRYABLE:
                if attempt == self.max_retries:
                    raise
                await asyncio.sleep(min(0.25 * (attempt + 1), 1.0))
        raise RuntimeError("unreachable")  # pragma: no cover

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
                headers={"content-type": "application/json"},
            )
        return self._session
