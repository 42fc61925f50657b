"""FastMCP tool registrations."""

from .crawling import register_crawling_tools
from .rag import register_rag_tools

__all__ = ["register_crawling_tools", "register_rag_tools"]
