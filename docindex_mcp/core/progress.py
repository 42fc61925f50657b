"""
Progress notification for crawl jobs.

The orchestrator publishes ``ProgressEvent`` objects to a ``ProgressSink``. How
events travel further (MCP context, polling, pub/sub) is up to the sink.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..constants import MAX_FINISHED_TRACKERS
from ..models.crawl import ProgressEvent
from .logging import get_class_logger


@runtime_checkable
class ProgressSink(Protocol):
    async def publish(self, event: ProgressEvent) -> None: ...


@dataclass
class ProgressTracker:
    operation_id: str
    start_time: float = field(default_factory=time.time)
    progress: int = 0
    total: int = 100
    status: str = "queued"
    message: str = ""
    last_event: ProgressEvent | None = None

    def update(self, event: ProgressEvent) -> None:
        if event.percentage is not None:
            self.progress = event.percentage
        self.status = event.status.value
        self.message = event.message
        self.last_event = event

    def progress_percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return min(100.0, max(0.0, (self.progress / self.total) * 100))

    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    def estimated_time_remaining(self) -> float | None:
        percent = self.progress_percentage()
        if percent <= 0:
            return None
        elapsed = self.elapsed_time()
        return max(0.0, (elapsed * (100 - percent)) / percent)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "progress": self.progress,
            "total": self.total,
            "status": self.status,
            "message": self.message,
            "progress_percentage": self.progress_percentage(),
            "elapsed_time": self.elapsed_time(),
            "estimated_time_remaining": self.estimated_time_remaining(),
        }


class LoggingProgressSink:
    """Writes every event to the log."""

    def __init__(self) -> None:
        self.logger = get_class_logger(self)

    async def publish(self, event: ProgressEvent) -> None:
        percentage = f"{event.percentage}%" if event.percentage is not None else "-"
        self.logger.info(
            f"[{event.job_id}] {event.status.value} {percentage}: {event.message}"
        )


class ProgressHub:
    """
    In-process event hub.

    Keeps a tracker with the latest event per job, fans events out to queue
    subscribers and lets callers await a job's terminal event. Only the most
    recent ``max_finished`` finished jobs stay tracked; older ones are evicted
    as new jobs finish.
    """

    def __init__(
        self, max_queue_size: int = 100, max_finished: int = MAX_FINISHED_TRACKERS
    ) -> None:
        self.logger = get_class_logger(self)
        self.max_queue_size = max_queue_size
        self.max_finished = max(1, max_finished)
        self._trackers: dict[str, ProgressTracker] = {}
        self._subscribers: dict[str, list[asyncio.Queue[ProgressEvent]]] = {}
        self._terminal: dict[str, asyncio.Event] = {}
        self._finished: OrderedDict[str, None] = OrderedDict()

    async def publish(self, event: ProgressEvent) -> None:
        tracker = self._trackers.get(event.job_id)
        if tracker is None:
            tracker = self._trackers[event.job_id] = ProgressTracker(event.job_id)
        tracker.update(event)

        for queue in self._subscribers.get(event.job_id, []):
            if queue.full():
                # Slow consumer: drop its oldest event
                queue.get_nowait()
            queue.put_nowait(event)

        if event.is_terminal:
            self._terminal_event(event.job_id).set()
            self._finished[event.job_id] = None
            self._finished.move_to_end(event.job_id)
            while len(self._finished) > self.max_finished:
                expired, _ = self._finished.popitem(last=False)
                self.remove_tracker(expired)

    def subscribe(self, job_id: str) -> asyncio.Queue[ProgressEvent]:
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(job_id, []).append(queue)
        tracker = self._trackers.get(job_id)
        if tracker is not None and tracker.last_event is not None:
            queue.put_nowait(tracker.last_event)
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue[ProgressEvent]) -> None:
        queues = self._subscribers.get(job_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(job_id, None)

    def get_tracker(self, job_id: str) -> ProgressTracker | None:
        return self._trackers.get(job_id)

    def latest(self, job_id: str) -> ProgressEvent | None:
        tracker = self._trackers.get(job_id)
        return tracker.last_event if tracker else None

    def remove_tracker(self, job_id: str) -> ProgressTracker | None:
        """Forget a job, including its subscribers."""
        self._finished.pop(job_id, None)
        self._terminal.pop(job_id, None)
        self._subscribers.pop(job_id, None)
        return self._trackers.pop(job_id, None)

    def list_active_operations(self) -> dict[str, dict[str, Any]]:
        return {
            job_id: tracker.to_dict()
            for job_id, tracker in self._trackers.items()
            if tracker.last_event is None or not tracker.last_event.is_terminal
        }

    async def wait_for_terminal(
        self, job_id: str, timeout: float | None = None
    ) -> ProgressEvent | None:
        """
        Wait until the job publishes ``complete`` or ``failed``.

        Returns:
            The terminal event, or None when the timeout expires first
        """
        try:
            await asyncio.wait_for(self._terminal_event(job_id).wait(), timeout=timeout)
        except TimeoutError:
            return None
        return self.latest(job_id)

    def _terminal_event(self, job_id: str) -> asyncio.Event:
        event = self._terminal.get(job_id)
        if event is None:
            event = self._terminal[job_id] = asyncio.Event()
        return event


class CompositeProgressSink:
    """Publishes to several sinks; a failing sink never stops the others."""

    def __init__(self, *sinks: ProgressSink) -> None:
        self.sinks = list(sinks)
        self.logger = get_class_logger(self)

    async def publish(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(event)
            except Exception as e:
                self.logger.warning(f"Progress sink {type(sink).__name__} failed: {e}")
