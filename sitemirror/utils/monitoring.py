"""
Monitoring and metrics collection for the crawl.
"""

import logging
import time
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class CrawlerMonitor:
    """
    Crawl metrics backed by a private Prometheus registry.

    Each monitor owns its registry so several crawls (or tests) in one
    process never share counters.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self.start_time = time.time()

        self.tasks_enqueued = Counter(
            'sitemirror_tasks_enqueued_total',
            'Tasks accepted by the crawl queue',
            ['kind'],
            registry=self.registry
        )
        self.tasks_rejected = Counter(
            'sitemirror_tasks_rejected_total',
            'Tasks refused by the crawl queue',
            ['reason'],
            registry=self.registry
        )
        self.fetch_attempts = Counter(
            'sitemirror_fetch_attempts_total',
            'HTTP attempts by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.download_failures = Counter(
            'sitemirror_download_failures_total',
            'Downloads that degraded to an empty body',
            ['reason'],
            registry=self.registry
        )
        self.pages_saved = Counter(
            'sitemirror_pages_saved_total',
            'Files written to the output directory',
            registry=self.registry
        )
        self.bytes_saved = Counter(
            'sitemirror_bytes_saved_total',
            'Bytes written to the output directory',
            registry=self.registry
        )
        self.queue_size = Gauge(
            'sitemirror_queue_size',
            'Tasks waiting in the crawl queue',
            registry=self.registry
        )
        self.active_tasks = Gauge(
            'sitemirror_active_tasks',
            'Tasks accepted but not yet done',
            registry=self.registry
        )

    def start_server(self, port: int):
        """Expose the registry over HTTP for scraping."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

    def record_enqueued(self, kind: str):
        self.tasks_enqueued.labels(kind=kind).inc()

    def record_rejection(self, reason: str):
        self.tasks_rejected.labels(reason=reason).inc()

    def record_fetch_attempt(self, outcome: str):
        self.fetch_attempts.labels(outcome=outcome).inc()

    def record_download_failure(self, reason: str):
        self.download_failures.labels(reason=reason).inc()

    def record_saved(self, size: int):
        self.pages_saved.inc()
        self.bytes_saved.inc(size)

    def update_queue(self, pending: int, active: int):
        self.queue_size.set(pending)
        self.active_tasks.set(active)

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0 if it was never recorded."""
        return self.registry.get_sample_value(name, labels or {}) or 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the main metrics."""
        runtime = time.time() - self.start_time
        saved = self.value('sitemirror_pages_saved_total')
        return {
            'runtime_seconds': runtime,
            'pages_saved': saved,
            'bytes_saved': self.value('sitemirror_bytes_saved_total'),
            'pages_per_minute': saved / (runtime / 60) if runtime > 0 else 0,
        }
