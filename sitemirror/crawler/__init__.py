"""
Web crawler core components.
"""

from .task_queue import (
    CrawlQueue, CrawlTask, TaskKind, QueueRejection, ExternalDomainError,
    DepthExceededError, AlreadyVisitedError, QueueFullError, QueueClosedError
)
from .robots import RobotsPolicy, RobotsError
from .fetcher import (
    WebFetcher, FetchResult, DownloadError, DisallowedError, TooManyAttemptsError
)
from .parser import ContentParser, ParseError
from .scheduler import CrawlerScheduler, CrawlStats, CrawlError

__all__ = [
    'CrawlQueue', 'CrawlTask', 'TaskKind', 'QueueRejection', 'ExternalDomainError',
    'DepthExceededError', 'AlreadyVisitedError', 'QueueFullError', 'QueueClosedError',
    'RobotsPolicy', 'RobotsError',
    'WebFetcher', 'FetchResult', 'DownloadError', 'DisallowedError', 'TooManyAttemptsError',
    'ContentParser', 'ParseError',
    'CrawlerScheduler', 'CrawlStats', 'CrawlError'
]
