"""
Crawler scheduler that owns the worker pool and drives a crawl to completion.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .task_queue import CrawlQueue, CrawlTask, QueueRejection, TaskKind
from .fetcher import WebFetcher, DisallowedError, TooManyAttemptsError
from .parser import ContentParser
from .robots import RobotsPolicy
from ..storage.file_storage import FileStorage
from ..utils.config import Config
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class CrawlError(Exception):
    """Fatal errors reported by workers, aggregated by the driver."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        first = self.errors[0] if self.errors else None
        message = f"Crawl aborted: {first}" if first else "Crawl aborted"
        if len(self.errors) > 1:
            message += f" (and {len(self.errors) - 1} more errors)"
        super().__init__(message)


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    tasks_processed: int = 0
    pages_saved: int = 0
    bytes_saved: int = 0
    holes: int = 0
    children_enqueued: int = 0
    rejections: Counter = field(default_factory=Counter)
    fatal_errors: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        return self.pages_saved / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlerScheduler:
    """
    Coordinates queue, fetcher, parser and storage for one crawl.

    Each worker repeatedly takes a task, downloads it, stores the body,
    offers the links it finds back to the queue and finally marks the task
    done. Fatal errors go to an error channel read by ``run``, which shuts the
    pool down and raises CrawlError.
    """

    def __init__(self, config: Config, parser: Optional[ContentParser] = None,
                 storage: Optional[FileStorage] = None,
                 fetcher: Optional[WebFetcher] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.crawler_config = config.crawler
        self.logger = logging.getLogger(__name__)

        # Components
        self.monitor = monitor or CrawlerMonitor()
        self.parser = parser or ContentParser()
        self.storage = storage or FileStorage(self.crawler_config.output_dir)
        self.fetcher = fetcher
        self.queue: Optional[CrawlQueue] = None

        # Crawl state
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self.max_depth = self.crawler_config.max_depth
        self._errors: "asyncio.Queue[BaseException]" = asyncio.Queue()
        self._stop_event = asyncio.Event()

    async def initialize(self):
        """Start the HTTP session, load the robots policy and prepare storage."""
        if self.fetcher is None:
            self.fetcher = WebFetcher(
                user_agent=self.crawler_config.user_agent,
                request_timeout=self.crawler_config.request_timeout,
                max_attempts=self.crawler_config.max_attempts,
                retry_delay=self.crawler_config.retry_delay,
                max_connections=self.crawler_config.concurrency * 2,
                monitor=self.monitor
            )
        await self.fetcher.start()

        if self.crawler_config.use_robots:
            self.fetcher.robots = await RobotsPolicy.fetch(
                self.fetcher.session,
                self.crawler_config.domain,
                timeout=self.crawler_config.request_timeout
            )

        await self.storage.initialize()

        if self.config.monitoring.metrics_enabled:
            self.monitor.start_server(self.config.monitoring.prometheus_port)

        self.logger.info("Crawler scheduler initialized")

    async def run(self) -> CrawlStats:
        """
        Crawl from the start URL until the queue drains.

        Raises:
            CrawlError: a worker hit a fatal error
            QueueRejection: the seed task itself was rejected
        """
        if self.is_running:
            raise RuntimeError("Crawler is already running")
        if self.fetcher is None or self.fetcher.session is None:
            await self.initialize()

        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        self.queue = CrawlQueue(self.crawler_config.queue_capacity, self.crawler_config.domain)

        stats_task = asyncio.create_task(self._stats_reporter())
        try:
            self.workers = [
                asyncio.create_task(self._worker(f"worker-{i}"))
                for i in range(self.crawler_config.concurrency)
            ]
            self.logger.info(f"Started crawling {self.crawler_config.start_url} "
                             f"with {len(self.workers)} workers")

            seed = CrawlTask(url=self.crawler_config.start_url, depth=0, kind=TaskKind.PAGE)
            self.queue.enqueue(seed, self.max_depth)
            self.monitor.record_enqueued(seed.kind.value)

            await self._wait_for_completion()
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)
            await self._shutdown_workers()
            self.is_running = False

        errors = self._drain_errors()
        self._log_final_stats()
        if errors:
            raise CrawlError(errors)
        return self.stats

    async def _wait_for_completion(self):
        """Block until the queue drains, a fatal error arrives or a stop is requested."""
        drained = asyncio.create_task(self.queue.wait_and_close())
        failed = asyncio.create_task(self._errors.get())
        stopped = asyncio.create_task(self._stop_event.wait())
        waiters = {drained, failed, stopped}

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.crawler_config.max_duration,
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if failed in done and not failed.cancelled():
            # Put it back so run() reports it with the others
            self._errors.put_nowait(failed.result())
            self.logger.error("Fatal error reported, shutting down workers")
        elif drained in done:
            self.logger.info("All tasks finished")
        elif stopped in done:
            self.logger.info("Stop requested, shutting down workers")
        else:
            self.logger.warning(f"Reached max duration of {self.crawler_config.max_duration}s, "
                                "shutting down workers")

    async def _shutdown_workers(self):
        """Close the queue, let workers finish their task, cancel the rest."""
        if self.queue is not None:
            self.queue.close()

        if not self.workers:
            return

        _, pending = await asyncio.wait(self.workers, timeout=self.crawler_config.shutdown_grace)
        for worker in pending:
            worker.cancel()
        if pending:
            self.logger.warning(f"Cancelled {len(pending)} workers still busy after "
                                f"{self.crawler_config.shutdown_grace}s")

        results = await asyncio.gather(*self.workers, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._errors.put_nowait(result)
        self.workers = []

    async def _worker(self, worker_id: str):
        """Worker coroutine that processes tasks until the queue is closed."""
        log = get_crawler_logger(__name__, worker=worker_id)
        log.debug("Worker started")

        async for task in self.queue.dequeue():
            try:
                await self._process_task(task, log)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.fatal_errors += 1
                log.log_url_event(logging.ERROR, task.url, f"Fatal error processing {task.url}: {e}")
                self._errors.put_nowait(e)
            finally:
                self.queue.done()
                self.stats.tasks_processed += 1

        log.debug("Worker finished")

    async def _process_task(self, task: CrawlTask, log: CrawlerLogAdapter):
        """Download, store and expand a single task."""
        try:
            result = await self.fetcher.download(task.url, self.crawler_config.use_robots)
            content, content_type = result.content, result.content_type
        except (TooManyAttemptsError, DisallowedError) as e:
            # Record a hole and keep crawling
            reason = 'disallowed' if isinstance(e, DisallowedError) else 'too_many_attempts'
            self.stats.holes += 1
            self.monitor.record_download_failure(reason)
            log.log_url_event(logging.WARNING, task.url, f"Saving empty content: {e}")
            content, content_type = b"", ""

        await self.storage.save(task.url, content, content_type)
        self.stats.pages_saved += 1
        self.stats.bytes_saved += len(content)
        self.monitor.record_saved(len(content))

        if task.depth < self.max_depth and task.kind is TaskKind.PAGE:
            pages, resources = self.parser.extract(content, task.url)
            self._enqueue_children(task, pages, TaskKind.PAGE)
            self._enqueue_children(task, resources, TaskKind.RESOURCE)

    def _enqueue_children(self, parent: CrawlTask, urls: List[str], kind: TaskKind):
        """Offer discovered URLs to the queue; rejections are expected."""
        for url in urls:
            child = CrawlTask(url=url, depth=parent.depth + 1, kind=kind)
            try:
                self.queue.enqueue(child, self.max_depth)
            except QueueRejection as rejection:
                self.stats.rejections[rejection.reason] += 1
                self.monitor.record_rejection(rejection.reason)
                continue
            self.stats.children_enqueued += 1
            self.monitor.record_enqueued(kind.value)

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        interval = self.crawler_config.stats_interval
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval)
            self._log_current_stats()

    def _log_current_stats(self):
        """Log current crawl statistics."""
        self.monitor.update_queue(self.queue.pending, self.queue.active)
        self.logger.info(
            f"Crawl Progress: "
            f"Processed={self.stats.tasks_processed}, "
            f"Saved={self.stats.pages_saved}, "
            f"Queued={self.queue.pending}, "
            f"Active={self.queue.active}, "
            f"Holes={self.stats.holes}, "
            f"Rate={self.stats.pages_per_minute:.1f} pages/min"
        )

    def _log_final_stats(self):
        """Log final crawl statistics."""
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Tasks processed: {self.stats.tasks_processed}")
        self.logger.info(f"Files saved: {self.stats.pages_saved}")
        self.logger.info(f"Unreachable or disallowed: {self.stats.holes}")
        self.logger.info(f"Rejected links: {dict(self.stats.rejections)}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        self.logger.info(f"Data saved: {self.stats.bytes_saved / 1024 / 1024:.1f} MB")
        if self.fetcher:
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")

    def _drain_errors(self) -> List[BaseException]:
        errors = []
        while not self._errors.empty():
            errors.append(self._errors.get_nowait())
        return errors

    def stop(self):
        """Request a graceful stop; ``run`` returns once workers wind down."""
        self.logger.info("Stopping crawler...")
        self._stop_event.set()

    async def close(self):
        """Close the HTTP session."""
        if self.fetcher:
            await self.fetcher.close()
        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict:
        """Get current crawl statistics."""
        return {
            'tasks_processed': self.stats.tasks_processed,
            'pages_saved': self.stats.pages_saved,
            'bytes_saved': self.stats.bytes_saved,
            'holes': self.stats.holes,
            'children_enqueued': self.stats.children_enqueued,
            'rejections': dict(self.stats.rejections),
            'elapsed_time': self.stats.elapsed_time,
            'is_running': self.is_running
        }
