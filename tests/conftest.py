"""
Shared fixtures: a small HTTP site served by aiohttp on localhost.
"""

import asyncio
from typing import Dict, List, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from sitemirror.utils.config import Config, CrawlerConfig


class FakeSite:
    """Serves canned responses and records every request path."""

    def __init__(self):
        self.pages: Dict[str, Tuple[bytes, str]] = {}
        self.failures: Dict[str, List[int]] = {}
        self.delays: Dict[str, float] = {}
        self.requests: List[str] = []
        self.server: TestServer = None

    def add(self, path: str, body, content_type: str = 'text/html; charset=utf-8'):
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.pages[path] = (body, content_type)

    def fail(self, path: str, *statuses: int):
        """Answer the next requests for ``path`` with these statuses."""
        self.failures[path] = list(statuses)

    def delay(self, path: str, seconds: float):
        self.delays[path] = seconds

    @property
    def domain(self) -> str:
        return f"{self.server.host}:{self.server.port}"

    def url(self, path: str) -> str:
        return f"http://{self.domain}{path}"

    def hits(self, path: str) -> int:
        return self.requests.count(path)

    async def handle(self, request: web.Request) -> web.Response:
        path = request.path_qs
        self.requests.append(path)

        if path in self.delays:
            await asyncio.sleep(self.delays[path])

        pending = self.failures.get(path)
        if pending:
            return web.Response(status=pending.pop(0))

        if path not in self.pages:
            return web.Response(status=404, text='not found')

        body, content_type = self.pages[path]
        return web.Response(body=body, headers={'Content-Type': content_type})


@pytest.fixture
async def site():
    fake = FakeSite()
    app = web.Application()
    app.router.add_route('GET', '/{tail:.*}', fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.server = server
    yield fake
    await server.close()


@pytest.fixture
async def dead_domain():
    """host:port of a server that has already been shut down."""
    server = TestServer(web.Application())
    await server.start_server()
    domain = f"{server.host}:{server.port}"
    await server.close()
    return domain


@pytest.fixture
def make_config(tmp_path):
    def _make(start_url: str, **crawler_options) -> Config:
        options = {
            'output_dir': str(tmp_path / 'out'),
            'retry_delay': 0,
            'stats_interval': 0,
            'shutdown_grace': 1.0,
            'request_timeout': 5,
        }
        options.update(crawler_options)
        return Config(crawler=CrawlerConfig(start_url=start_url, **options))
    return _make
