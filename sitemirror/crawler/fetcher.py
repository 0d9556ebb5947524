"""
Resource downloader with bounded retries and robots.txt enforcement.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError

from .robots import RobotsPolicy
from ..utils.monitoring import CrawlerMonitor


@dataclass
class FetchResult:
    """Result of a successful download."""
    url: str
    status_code: int
    content: bytes
    content_type: str = ""
    attempts: int = 1
    fetch_time: float = 0.0


class DownloadError(Exception):
    """Base class for download failures."""
    pass


class DisallowedError(DownloadError):
    """The robots policy denies the URL; no request was made."""

    def __init__(self, url: str):
        super().__init__(f"Disallowed by robots.txt: {url}")
        self.url = url


class TooManyAttemptsError(DownloadError):
    """Every attempt failed to produce a 200 response."""

    def __init__(self, url: str, attempts: int, last_status: Optional[int] = None):
        detail = f"last status: {last_status}" if last_status is not None else "no response"
        super().__init__(f"Can't download {url} after {attempts} attempts, {detail}")
        self.url = url
        self.attempts = attempts
        self.last_status = last_status


class WebFetcher:
    """
    Downloads single resources over HTTP.

    Each call makes up to ``max_attempts`` GET requests. Transport errors and
    non-200 responses are retried after ``attempt * retry_delay`` seconds.
    """

    def __init__(self, user_agent: str, robots: Optional[RobotsPolicy] = None,
                 request_timeout: float = 30, max_attempts: int = 3,
                 retry_delay: float = 1.0, max_connections: int = 10,
                 monitor: Optional[CrawlerMonitor] = None):
        self.user_agent = user_agent
        self.robots = robots or RobotsPolicy.empty()
        self.request_timeout = request_timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_connections = max_connections
        self.monitor = monitor

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'robots_blocked': 0,
            'exhausted': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def download(self, url: str, enforce_robots: bool = False) -> FetchResult:
        """
        Download a single URL.

        Args:
            url: Absolute URL to fetch
            enforce_robots: Refuse URLs the robots policy denies

        Returns:
            FetchResult with the body and declared content type

        Raises:
            DisallowedError: robots policy denies the URL
            TooManyAttemptsError: no attempt returned 200
            DownloadError: the body of a 200 response could not be read
        """
        if self.session is None:
            raise RuntimeError("WebFetcher.start() must be called before download()")

        if enforce_robots and not self.robots.is_allowed(self.user_agent, url):
            self.stats['robots_blocked'] += 1
            self.logger.info(f"Robots.txt blocks access to: {url}")
            raise DisallowedError(url)

        start_time = time.time()
        last_status: Optional[int] = None
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            self.logger.info(f"Downloading {url}, attempt: {attempt}")
            self.stats['total_requests'] += 1

            try:
                async with self.session.get(url) as response:
                    last_status = response.status
                    last_error = None
                    if response.status == 200:
                        content = await self._read_body(url, response)
                        content_type = response.headers.get('Content-Type', '')
                        self._record_attempt('ok')
                        self.stats['successful_requests'] += 1
                        self.stats['total_bytes_downloaded'] += len(content)
                        self.logger.debug(f"Fetched {url}: {len(content)} bytes ({content_type})")
                        return FetchResult(
                            url=url,
                            status_code=response.status,
                            content=content,
                            content_type=content_type,
                            attempts=attempt,
                            fetch_time=time.time() - start_time
                        )
                    # Leaving the context releases the connection
                    self._record_attempt('bad_status')
                    self.logger.warning(f"Got status {response.status} for {url}")

            except (ClientError, asyncio.TimeoutError) as e:
                last_status = None
                last_error = e
                self._record_attempt('transport_error')
                self.logger.warning(f"Error fetching {url}: {e!r}")

            self.stats['failed_requests'] += 1
            if attempt < self.max_attempts:
                await asyncio.sleep(attempt * self.retry_delay)

        self.stats['exhausted'] += 1
        error = TooManyAttemptsError(url, self.max_attempts, last_status)
        self.logger.warning(str(error))
        if last_error is not None:
            raise error from last_error
        raise error

    async def _read_body(self, url: str, response: aiohttp.ClientResponse) -> bytes:
        """Read the whole body of a 200 response."""
        try:
            return await response.read()
        except (ClientError, asyncio.TimeoutError) as e:
            raise DownloadError(f"Error reading body of {url}: {e!r}") from e

    def _record_attempt(self, outcome: str):
        if self.monitor:
            self.monitor.record_fetch_attempt(outcome)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
