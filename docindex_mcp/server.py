"""
DocIndex MCP FastMCP Server (top-level entry)

Registers crawl submission and retrieval tools over the shared process
runtime (registry, TEI embeddings, Qdrant store, crawl orchestrator).
"""

from __future__ import annotations

import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.middleware.error_handling import ErrorHandlingMiddleware
from fastmcp.server.middleware.logging import LoggingMiddleware
from fastmcp.server.middleware.timing import TimingMiddleware
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

from docindex_mcp import __version__
from docindex_mcp.core.exceptions import DocIndexError
from docindex_mcp.core.logging import get_logger
from docindex_mcp.core.runtime import get_runtime, shutdown_runtime
from docindex_mcp.settings import get_settings
from docindex_mcp.tools import register_crawling_tools, register_rag_tools

settings = get_settings()


def setup_logging() -> None:
    """Configure rich colorized logging for the application."""
    install(show_locals=settings.debug)

    # stdio transport owns stdout
    console = Console(stderr=True, force_terminal=True, width=120)
    rich_handler = RichHandler(
        console=console,
        show_path=settings.debug,
        show_time=True,
        rich_tracebacks=True,
        tracebacks_show_locals=settings.debug,
        markup=False,
        log_time_format="[%H:%M:%S]",
    )

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
    )

    if settings.log_to_file and settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(message)s", datefmt="%H:%M:%S"
            )
        )
        logging.getLogger().addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )


setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
    """Release the shared runtime on shutdown."""
    yield
    await shutdown_runtime()
    logger.info("DocIndex runtime stopped")


mcp: FastMCP = FastMCP(settings.server_name, lifespan=lifespan)

mcp.add_middleware(ErrorHandlingMiddleware())
mcp.add_middleware(LoggingMiddleware())
mcp.add_middleware(TimingMiddleware())

register_crawling_tools(mcp)
register_rag_tools(mcp)

logger.info("Registered FastMCP tools")


@mcp.tool
async def health_check(ctx: Context, detailed: bool = False) -> dict[str, Any]:
    """Perform a health check of all services."""
    check_type = "detailed" if detailed else "lightweight"
    await ctx.info(f"Performing {check_type} health check of all services")

    try:
        runtime = await get_runtime()
    except DocIndexError as e:
        raise ToolError(f"Health check failed: {e.message}") from e

    health_results: dict[str, Any] = {
        "server": {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(UTC).isoformat(),
        },
        "services": {},
        "configuration": {
            "embedding_model": settings.tei_model,
            "vector_database": settings.qdrant_url,
            "embedding_service": settings.tei_url,
            "collection": settings.qdrant_collection,
            "vector_dimension": settings.qdrant_vector_size,
            "max_pages": settings.max_pages,
            "page_concurrency": settings.page_concurrency,
            "firecrawl_keys": len(settings.firecrawl_keys),
        },
    }
    services: dict[str, Any] = health_results["services"]

    rag_health = await runtime.rag.health_check()
    services["embedding"] = {
        "status": "healthy" if rag_health["embedding"] else "unhealthy",
        "url": settings.tei_url,
        "model": settings.tei_model,
    }
    services["vector"] = {
        "status": "healthy" if rag_health["vector"] else "unhealthy",
        "url": settings.qdrant_url,
        "collection": settings.qdrant_collection,
    }
    services["jobs"] = {
        "active": runtime.orchestrator.tasks.active_count,
        "operations": runtime.hub.list_active_operations(),
    }

    if detailed:
        try:
            health_results["stats"] = await runtime.rag.get_stats()
        except DocIndexError as e:
            health_results["stats"] = {"status": "error", "error": e.message}

    if not all(rag_health.values()):
        health_results["server"]["status"] = "degraded"
    return health_results


def _sigterm_handler(signum: int, _frame: Any) -> None:  # pragma: no cover
    logger.info(f"Received signal {signum}, shutting down...")
    sys.exit(0)


def main() -> None:
    signal.signal(signal.SIGTERM, _sigterm_handler)
    try:
        console = Console(stderr=True)
        console.print("")
        console.print(f"[bold blue]DocIndex-MCP Server v{__version__}[/bold blue]")
        console.print("[dim]Documentation ingestion and retrieval[/dim]")
        console.print("")

        if settings.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(
                transport=settings.transport,
                host=settings.server_host,
                port=settings.server_port,
            )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:  # pragma: no cover
        logger.exception(f"Server failed to start: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
