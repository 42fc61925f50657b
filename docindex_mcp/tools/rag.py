"""
FastMCP tools for retrieval over indexed documentation.
"""

from __future__ import annotations

from typing import Any

from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError

from docindex_mcp.constants import DEFAULT_SEARCH_LIMIT
from docindex_mcp.core.exceptions import DocIndexError
from docindex_mcp.core.runtime import get_runtime
from docindex_mcp.models.crawl import DocumentStatus
from docindex_mcp.models.sections import RankedResults, SearchHit

MAX_LIMIT = 50


def _validate_query(query: str, limit: int | None = None) -> str:
    if not query.strip():
        raise ToolError("query cannot be empty")
    if limit is not None and not 1 <= limit <= MAX_LIMIT:
        raise ToolError(f"limit must be between 1 and {MAX_LIMIT}")
    return query.strip()


def _hits_payload(hits: list[SearchHit], include_content: bool) -> list[dict[str, Any]]:
    return [hit.to_dict(include_content=include_content) for hit in hits]


def _ranked_payload(
    query: str, ranked: RankedResults, include_content: bool
) -> dict[str, Any]:
    result: dict[str, Any] = {
        "query": query,
        "total_matches": len(ranked.hits),
        "matches": _hits_payload(ranked.hits, include_content),
        "unmatched_hits": ranked.unmatched_hits,
    }
    if ranked.targets is not None:
        result["targets"] = ranked.targets.model_dump()
    return result


def register_rag_tools(mcp: FastMCP) -> None:
    """Register all retrieval tools with the FastMCP server."""

    @mcp.tool
    async def search_docs(
        ctx: Context,
        query: str,
        limit: int | None = None,
        doc: str | None = None,
        docs: list[str] | None = None,
        expand_query: bool = False,
        include_content: bool = True,
    ) -> dict[str, Any]:
        """
        Semantic search over indexed documentation.

        With `docs`, results are balanced across the listed documents so a
        sparsely indexed one still contributes its best sections. With `doc`,
        results are restricted to that document. Otherwise the whole
        collection is searched. `limit` caps the result count; without it a
        single search returns 5 hits and a `docs` search the configured
        result budget. `expand_query` applies to single searches only.
        """
        query = _validate_query(query, limit)
        if doc and docs:
            raise ToolError("pass either doc or docs, not both")
        if docs and expand_query:
            raise ToolError("expand_query cannot be combined with docs")

        await ctx.info(f"Searching docs: '{query}' (limit: {limit or 'default'})")
        try:
            runtime = await get_runtime()
            if docs:
                ranked = await runtime.rag.search_documents(query, docs, max_results=limit)
                await ctx.info(f"Search completed: {len(ranked.hits)} matches")
                return _ranked_payload(query, ranked, include_content)

            limit = limit or DEFAULT_SEARCH_LIMIT

            if expand_query:
                hits = await runtime.rag.search_with_expansion(query, limit, doc)
            else:
                hits = await runtime.rag.search(query, limit, doc)
        except DocIndexError as e:
            error_msg = f"Search failed: {e.message}"
            await ctx.info(error_msg)
            raise ToolError(error_msg) from e

        await ctx.info(f"Search completed: {len(hits)} matches")
        return {
            "query": query,
            "total_matches": len(hits),
            "matches": _hits_payload(hits, include_content),
        }

    @mcp.tool
    async def search_session(
        ctx: Context,
        query: str,
        session_id: str,
        include_content: bool = True,
    ) -> dict[str, Any]:
        """
        Search every document attached to a session.

        A query that names one of the attached documents (for example
        "prisma migrations" with Prisma and Next.js attached) is narrowed to it.
        """
        query = _validate_query(query)
        if not session_id.strip():
            raise ToolError("session_id cannot be empty")

        try:
            runtime = await get_runtime()
            doc_urls = await runtime.registry.session_documents(session_id)
            if not doc_urls:
                await ctx.info(f"Session {session_id} has no documents attached")
                return {"query": query, "total_matches": 0, "matches": []}

            await ctx.info(f"Searching {len(doc_urls)} session documents: '{query}'")
            ranked = await runtime.rag.search_session(query, doc_urls)
        except DocIndexError as e:
            raise ToolError(f"Session search failed: {e.message}") from e

        result = _ranked_payload(query, ranked, include_content)
        result["documents"] = doc_urls
        return result

    @mcp.tool
    async def compare_docs(
        ctx: Context,
        query: str,
        docs: list[str],
        per_doc: int = 5,
    ) -> dict[str, Any]:
        """Top sections for the query from each listed document, side by side."""
        query = _validate_query(query, per_doc)
        if not docs:
            raise ToolError("docs cannot be empty")

        await ctx.info(f"Comparing {len(docs)} documents for '{query}'")
        try:
            runtime = await get_runtime()
            per_document = await runtime.rag.search_across_documents(query, docs, per_doc)
        except DocIndexError as e:
            raise ToolError(f"Comparison failed: {e.message}") from e

        return {
            "query": query,
            "documents": {
                url: _hits_payload(hits, include_content=True)
                for url, hits in per_document.items()
            },
        }

    @mcp.tool
    async def list_indexed_docs(
        ctx: Context,
        user_id: str | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        """List indexed documentation sites, optionally only those a user indexed."""
        status_filter: DocumentStatus | None = None
        if status is not None:
            try:
                status_filter = DocumentStatus(status)
            except ValueError as e:
                valid = ", ".join(s.value for s in DocumentStatus)
                raise ToolError(f"status must be one of: {valid}") from e

        await ctx.info("Listing indexed documents")
        try:
            runtime = await get_runtime()
            documents = await runtime.registry.list_documents(
                indexed_by=user_id, status=status_filter
            )
            result: dict[str, Any] = {
                "documents": [d.model_dump(mode="json", exclude_none=True) for d in documents],
                "total": len(documents),
            }
            if user_id is not None:
                result["stored"] = await runtime.vectors.list_user_documents(user_id)
        except DocIndexError as e:
            raise ToolError(f"Failed to list documents: {e.message}") from e
        return result
