"""Documentation ingestion and retrieval server."""

__version__ = "0.1.0"
