"""
Lifecycle base for long-lived services.

Subclasses open their network clients in ``_initialize``, release them in
``_cleanup`` and report liveness from ``_health_check``. The public methods are
idempotent and serialized by a per-instance lock, so concurrent tool calls can
all ``await service.initialize()`` safely.
"""

import asyncio
from abc import ABC
from typing import Any, TypeVar

from .logging import get_class_logger

T = TypeVar("T", bound="AsyncServiceBase")


class AsyncServiceBase(ABC):
    """Service with an async open/close lifecycle and async context manager support."""

    def __init__(self) -> None:
        self.logger = get_class_logger(self)
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        async with self._lock:
            if self._initialized:
                return
            self.logger.debug(f"Initializing {type(self).__name__}")
            await self._initialize()
            self._initialized = True

    async def cleanup(self) -> None:
        """Release resources; errors are logged, never raised."""
        async with self._lock:
            if not self._initialized:
                return
            self.logger.debug(f"Cleaning up {type(self).__name__}")
            try:
                await self._cleanup()
            except Exception as e:
                self.logger.error(f"Error during cleanup of {type(self).__name__}: {e}")
            finally:
                self._initialized = False

    async def health_check(self) -> bool:
        """Service liveness; a failing probe reads as unhealthy."""
        try:
            return await self._health_check()
        except Exception as e:
            self.logger.error(f"Health check of {type(self).__name__} failed: {e}")
            return False

    async def _initialize(self) -> None:
        pass

    async def _cleanup(self) -> None:
        pass

    async def _health_check(self) -> bool:
        return self._initialized

    async def __aenter__(self: T) -> T:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()
