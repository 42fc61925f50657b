"""
Async helpers shared by the crawl orchestrator and its services.

Provides the retry primitive behind per-step retry budgets, a bounded
fan-out helper for page processing, and a task manager for background jobs.
"""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from typing import Any, TypeVar, cast

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def retry_call(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 2,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    label: str | None = None,
    **kwargs: Any,
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying on failure with exponential backoff.

    Args:
        func: Async callable to run
        max_retries: Number of retries after the first attempt
        delay: Initial delay between retries
        backoff_factor: Multiplier for delay on each retry
        exceptions: Exception types that trigger a retry
        label: Name used in log lines, defaults to the function name

    Returns:
        The callable's result
    """
    name = label or getattr(func, "__name__", "operation")
    current_delay = delay

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            if attempt == max_retries:
                logger.error(f"{name} failed after {max_retries} retries: {e}")
                raise

            logger.warning(
                f"{name} attempt {attempt + 1} failed: {e}, retrying in {current_delay}s"
            )
            if current_delay > 0:
                await asyncio.sleep(current_delay)
            current_delay *= backoff_factor

    raise RuntimeError("unreachable")  # pragma: no cover


async def gather_bounded(
    items: Iterable[T],
    worker: Callable[[int, T], Awaitable[R]],
    max_concurrency: int,
) -> list[R]:
    """
    Run ``worker(index, item)`` for every item with at most N in flight.

    Results come back in input order once every worker has settled, so callers
    merge per-item outputs after the barrier instead of appending to shared
    state from inside the workers.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _run(index: int, item: T) -> R:
        async with semaphore:
            return await worker(index, item)

    return list(await asyncio.gather(*(_run(i, item) for i, item in enumerate(items))))


class TaskManager:
    """Manager for creating and tracking background tasks."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def create_task(self, coro: Awaitable[T], name: str) -> asyncio.Task[T]:
        """
        Schedule a coroutine and keep a strong reference until it finishes.

        Args:
            coro: Coroutine to run
            name: Unique task name, used for lookup

        Returns:
            asyncio.Task instance
        """
        task: asyncio.Task[T] = asyncio.create_task(
            cast(Coroutine[Any, Any, T], coro), name=name
        )
        self._tasks[name] = task

        def _forget(t: asyncio.Task[Any]) -> None:
            if self._tasks.get(name) is t:
                del self._tasks[name]
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Background task {name} crashed: {t.exception()}")

        task.add_done_callback(_forget)
        return task

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._tasks.get(name)

    async def cancel_all(self) -> None:
        """Cancel all tracked tasks."""
        tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_for_completion(self, timeout: float | None = None) -> None:
        """Wait for all tracked tasks to complete."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        if timeout:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True), timeout=timeout
            )
        else:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def active_count(self) -> int:
        """Get the number of active tracked tasks."""
        return len([t for t in self._tasks.values() if not t.done()])
