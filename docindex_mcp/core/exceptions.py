"""
Exception hierarchy and the handling decorator for the ingestion pipeline.

Only discovery failures and exhausted retry budgets reach the caller; the
decorator below implements the log-and-continue recovery used for single
pages.
"""

import functools
import logging
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class DocIndexError(Exception):
    """Base exception for all DocIndex related errors."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class DiscoveryError(DocIndexError):
    """Raised when no crawlable page could be discovered for a root URL."""

    pass


class FetchError(DocIndexError):
    """Raised when a page cannot be fetched by any method."""

    pass


class RateLimitedError(FetchError):
    """Raised when the primary extraction service rejects a credential (HTTP 429)."""

    def __init__(
        self, message: str, key_index: int, cause: Exception | None = None
    ) -> None:
        super().__init__(message, cause)
        self.key_index = key_index


class EmbeddingError(DocIndexError):
    """Exception raised by the embedding service."""

    pass


class StoreError(DocIndexError):
    """Exception raised by the vector store or the document registry."""

    pass


class JobTimeoutError(DocIndexError):
    """Raised when a crawl job exceeds its wall-clock budget."""

    pass


def handle_exceptions(
    *,
    logger_instance: logging.Logger | None = None,
    default_return: Any = None,
    re_raise: bool = False,
    log_level: int = logging.ERROR,
    message_template: str = "Error in {function_name}: {error}",
) -> Callable[[Callable[P, T]], Callable[P, T | Any]]:
    """
    Decorator to centralize exception handling patterns.

    Args:
        logger_instance: Optional specific logger to use
        default_return: Value to return if exception occurs and re_raise is False
        re_raise: Whether to re-raise the exception after logging
        log_level: Logging level for the error message
        message_template: Template for the error message

    Returns:
        Decorated function with centralized exception handling
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T | Any]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T | Any:
            current_logger = logger_instance or logger
            function_name = f"{func.__module__}.{func.__qualname__}"

            try:
                return func(*args, **kwargs)
            except Exception as e:
                error_message = message_template.format(
                    function_name=function_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                current_logger.log(log_level, error_message)

                if re_raise:
                    raise
                return default_return

        return wrapper

    return decorator
