"""
Crawl submission tools: `submit_crawl` and `crawl_status`.

Submission returns immediately; the crawl runs as a background job owned by
the process runtime and reports through the progress hub.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse, urlunparse

from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError

from docindex_mcp.core.exceptions import DocIndexError
from docindex_mcp.core.runtime import get_runtime
from docindex_mcp.processing.url_filters import is_http_url


def _sanitize_url_for_logging(url: str) -> str:
    """Sanitize URL by removing credentials from userinfo component."""
    try:
        parsed = urlparse(url)
        if parsed.username or parsed.password:
            sanitized = parsed._replace(
                netloc=f"REDACTED@{parsed.hostname}"
                + (f":{parsed.port}" if parsed.port else "")
            )
            return urlunparse(sanitized)
        return url
    except ValueError:
        return "[URL parsing failed - redacted for security]"


def register_crawling_tools(mcp: FastMCP) -> None:
    """Register crawl tools with the FastMCP server."""

    @mcp.tool
    async def submit_crawl(
        ctx: Context,
        url: str,
        user_id: str,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Index a documentation site so it becomes searchable.

        Returns `ready` when the site is already indexed, `indexing` with the
        running job's id when another crawl of it is in progress, or `queued`
        with a new job id.
        """
        url = url.strip()
        if not is_http_url(url):
            raise ToolError("url must be an absolute http(s) URL")
        if not user_id.strip():
            raise ToolError("user_id cannot be empty")

        await ctx.info(f"Submitting crawl for {_sanitize_url_for_logging(url)}")
        try:
            runtime = await get_runtime()
            result = await runtime.orchestrator.submit_crawl(url, user_id.strip(), session_id)
        except DocIndexError as e:
            raise ToolError(f"Crawl submission failed: {e.message}") from e

        await ctx.info(f"{result.status.value}: {result.message}")
        return result.to_dict()

    @mcp.tool
    async def crawl_status(ctx: Context, job_id: str) -> dict[str, Any]:
        """Current state of a crawl job: status, progress and counters."""
        if not job_id.strip():
            raise ToolError("job_id cannot be empty")

        try:
            runtime = await get_runtime()
            job = await runtime.registry.get_job(job_id)
        except DocIndexError as e:
            raise ToolError(f"Failed to read job: {e.message}") from e
        if job is None:
            raise ToolError(f"Unknown job: {job_id}")

        result: dict[str, Any] = {"job": job.model_dump(mode="json", exclude_none=True)}
        latest = runtime.hub.latest(job_id)
        if latest is not None:
            result["progress"] = latest.to_dict()
        tracker = runtime.hub.get_tracker(job_id)
        if tracker is not None:
            result["timing"] = {
                "elapsed_time": tracker.elapsed_time(),
                "estimated_time_remaining": tracker.estimated_time_remaining(),
            }
        return result
