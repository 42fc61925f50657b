"""
Async Qdrant REST client covering the calls the vector service needs.

Every call goes through ``_call``, which raises ``aiohttp.ClientResponseError``
for non-2xx answers and returns the decoded JSON body. Callers translate those
errors into store errors.
"""

from __future__ import annotations

from typing import Any

import aiohttp


class QdrantClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_s: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.headers = {"content-type": "application/json"}
        if api_key:
            self.headers["api-key"] = api_key
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> QdrantClient:
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # Collections

    async def collection_exists(self, name: str) -> bool:
        sess = await self._get_session()
        async with sess.get(self._url(name)) as resp:
            if resp.status == 404:
                return False
            resp.raise_for_status()
            return True

    async def ensure_collection(self, name: str, *, size: int, distance: str = "Cosine") -> bool:
        """Create the collection when missing; True when this call created it."""
        if await self.collection_exists(name):
            return False
        await self._call("PUT", self._url(name), {"vectors": {"size": size, "distance": distance}})
        return True

    async def create_payload_index(self, name: str, field_name: str) -> None:
        """Keyword index so payload filters on ``field_name`` stay fast."""
        await self._call(
            "PUT",
            self._url(name, "index"),
            {"field_name": field_name, "field_schema": "keyword"},
        )

    async def get_collection(self, name: str) -> dict[str, Any]:
        return await self._call("GET", self._url(name))

    # Points

    async def upsert(
        self, name: str, points: list[dict[str, Any]], *, wait: bool = True
    ) -> dict[str, Any]:
        return await self._call(
            "PUT",
            self._url(name, "points"),
            {"points": points},
            params={"wait": str(wait).lower()},
        )

    async def search(
        self,
        name: str,
        *,
        vector: list[float],
        limit: int,
        with_payload: bool = True,
    ) -> dict[str, Any]:
        body = {"vector": vector, "limit": limit, "with_payload": with_payload}
        return await self._call("POST", self._url(name, "points/search"), body)

    async def scroll_points(
        self,
        name: str,
        *,
        limit: int,
        offset: Any = None,
        with_payload: bool | list[str] = True,
        query_filter: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": False,
        }
        if offset is not None:
            body["offset"] = offset
        if query_filter:
            body["filter"] = query_filter
        return await self._call("POST", self._url(name, "points/scroll"), body)

    async def count_points(
        self, name: str, *, query_filter: dict[str, Any] | None = None
    ) -> int:
        body: dict[str, Any] = {"exact": True}
        if query_filter:
            body["filter"] = query_filter
        data = await self._call("POST", self._url(name, "points/count"), body)
        return int((data.get("result") or {}).get("count", 0))

    async def health(self) -> bool:
        sess = await self._get_session()
        try:
            async with sess.get(f"{self.base_url}/healthz") as resp:
                return resp.status == 200
        except (aiohttp.ClientError, TimeoutError):
            return False

    # Plumbing

    def _url(self, name: str, suffix: str = "") -> str:
        url = f"{self.base_url}/collections/{name}"
        return f"{url}/{suffix}" if suffix else url

    async def _call(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None = None,
        *,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        sess = await self._get_session()
        async with sess.request(method, url, json=body, params=params) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s), headers=self.headers
            )
        return self._session
