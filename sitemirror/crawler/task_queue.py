"""
Crawl task queue.
Bounded, deduplicating, domain and depth scoped queue with active-task
accounting so the crawl can detect quiescence.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Set
from urllib.parse import urlparse


class TaskKind(Enum):
    """What a task downloads."""
    PAGE = "page"
    RESOURCE = "resource"


@dataclass(frozen=True)
class CrawlTask:
    """Represents one unit of crawl work."""
    url: str
    depth: int
    kind: TaskKind = TaskKind.PAGE

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc.lower()


class QueueRejection(Exception):
    """Base class for tasks the queue refuses to accept."""
    reason = "rejected"

    def __init__(self, task: CrawlTask):
        super().__init__(f"{self.reason}: {task.url}")
        self.task = task


class ExternalDomainError(QueueRejection):
    reason = "external_domain"


class DepthExceededError(QueueRejection):
    reason = "depth_exceeded"


class AlreadyVisitedError(QueueRejection):
    reason = "already_visited"


class QueueFullError(QueueRejection):
    reason = "queue_full"


class QueueClosedError(QueueRejection):
    reason = "queue_closed"


# Marks end-of-sequence for consumers; passed on from worker to worker.
_CLOSED = object()


class CrawlQueue:
    """
    Open work queue shared by producers and consumers.

    Workers both consume tasks and produce new ones, so an empty buffer does
    not mean the crawl is over. Completion is tracked with an active-task
    counter: it rises on every accepted ``enqueue`` and falls on ``done``,
    which a worker calls only after it has offered all children of its task.
    """

    def __init__(self, capacity: int, domain: str):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.domain = domain.lower()
        self.logger = logging.getLogger(__name__)

        # Capacity is enforced in enqueue; the unbounded asyncio queue always
        # has room for the close marker.
        self._tasks: asyncio.Queue = asyncio.Queue()
        self._visited: Set[str] = set()
        self._lock = threading.Lock()
        self._active = 0
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Tasks accepted but not yet handed to a consumer."""
        if self._closed:
            return 0
        return self._tasks.qsize()

    @property
    def active(self) -> int:
        """Tasks accepted but not yet marked done."""
        return self._active

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, task: CrawlTask, max_depth: int) -> None:
        """
        Accept a task or raise the reason it was rejected.

        Never blocks: a saturated buffer fails with QueueFullError, and the
        URL stays unvisited so it may be accepted if discovered again later.
        """
        with self._lock:
            if self._closed:
                raise QueueClosedError(task)

            if task.host != self.domain:
                raise ExternalDomainError(task)

            if task.depth > max_depth:
                raise DepthExceededError(task)

            if task.url in self._visited:
                raise AlreadyVisitedError(task)

            if self._tasks.qsize() >= self.capacity:
                raise QueueFullError(task)

            self._visited.add(task.url)
            self._active += 1
            self._drained.clear()
            self._tasks.put_nowait(task)

        self.logger.debug(f"Enqueued {task.kind.value} at depth {task.depth}: {task.url}")

    async def dequeue(self) -> AsyncIterator[CrawlTask]:
        """
        Yield tasks until the queue is closed.

        Every worker iterates its own ``dequeue()``; they all drain the same
        buffer and all stop once it is closed.
        """
        while True:
            task = await self._tasks.get()
            if task is _CLOSED:
                # Hand the marker on so the other consumers stop too
                self._tasks.put_nowait(_CLOSED)
                return
            yield task

    def done(self) -> None:
        """Mark one previously accepted task as fully processed."""
        with self._lock:
            if self._active <= 0:
                raise ValueError("done() called more times than tasks were enqueued")
            self._active -= 1
            if self._active == 0:
                self._drained.set()

    async def wait_and_close(self) -> None:
        """Wait until every accepted task is done, then close the queue."""
        while self._active > 0:
            await self._drained.wait()
        self.close()

    def close(self) -> None:
        """Close the queue now, dropping tasks nobody picked up yet."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            dropped = 0
            while not self._tasks.empty():
                self._tasks.get_nowait()
                dropped += 1
            self._active -= dropped
            if self._active == 0:
                self._drained.set()
            self._tasks.put_nowait(_CLOSED)

        if dropped:
            self.logger.info(f"Queue closed with {dropped} pending tasks dropped")
        else:
            self.logger.debug("Queue closed")
