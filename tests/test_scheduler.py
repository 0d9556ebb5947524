import asyncio

import pytest

from sitemirror.crawler.parser import ContentParser
from sitemirror.crawler.robots import RobotsError
from sitemirror.crawler.scheduler import CrawlError, CrawlerScheduler
from sitemirror.storage.file_storage import FileStorage, StorageError


async def crawl(config, **components):
    scheduler = CrawlerScheduler(config, **components)
    try:
        await scheduler.initialize()
        stats = await asyncio.wait_for(scheduler.run(), timeout=20)
    finally:
        await scheduler.close()
    return scheduler, stats


def build_small_site(site):
    site.add("/", """
        <link rel="stylesheet" href="/style.css">
        <a href="/a">A</a>
        <a href="/b">B</a>
        <a href="http://other.invalid/x">External</a>
    """)
    site.add("/a", '<a href="/c">C</a><a href="/">Home</a>')
    site.add("/b", '<img src="/logo.png">')
    site.add("/c", "deep")
    site.add("/style.css", "body{}", "text/css")
    site.add("/logo.png", b"\x89PNG", "image/png")


async def test_depth_one_crawl(site, make_config, tmp_path):
    build_small_site(site)
    config = make_config(site.url("/"), max_depth=1, concurrency=1)

    scheduler, stats = await crawl(config)

    assert sorted(site.requests) == ["/", "/a", "/b", "/style.css"]
    out = tmp_path / "out" / site.domain.replace(":", "_")
    assert (out / "index.html").exists()
    assert (out / "a.html").read_bytes().startswith(b"<a href")
    assert (out / "style.css").read_bytes() == b"body{}"
    assert not (out / "c.html").exists()
    assert stats.tasks_processed == 4
    assert stats.holes == 0
    assert scheduler.queue.closed
    assert scheduler.queue.active == 0


async def test_full_depth_crawl_visits_every_url_once(site, make_config):
    build_small_site(site)
    config = make_config(site.url("/"), max_depth=5, concurrency=4)

    _, stats = await crawl(config)

    assert sorted(site.requests) == ["/", "/a", "/b", "/c", "/logo.png", "/style.css"]
    assert stats.rejections["already_visited"] == 1


async def test_many_workers_on_a_densely_linked_site(site, make_config):
    paths = [f"/p{i}" for i in range(30)]
    links = "".join(f'<a href="{p}">{p}</a>' for p in paths)
    site.add("/", links)
    for p in paths:
        site.add(p, links)
    config = make_config(site.url("/"), max_depth=3, concurrency=8)

    _, stats = await crawl(config)

    assert sorted(site.requests) == sorted(["/"] + paths)
    assert stats.pages_saved == 31


async def test_queue_capacity_drops_overflow_without_stalling(site, make_config):
    paths = [f"/p{i}" for i in range(10)]
    site.add("/", "".join(f'<a href="{p}">{p}</a>' for p in paths))
    for p in paths:
        site.add(p, "leaf")
    config = make_config(site.url("/"), max_depth=1, concurrency=1, queue_capacity=3)

    _, stats = await crawl(config)

    assert stats.rejections["queue_full"] == 7
    assert len(site.requests) == 4


async def test_unreachable_page_leaves_a_hole(site, make_config, tmp_path):
    site.add("/", '<a href="/broken">broken</a><a href="/ok">ok</a>')
    site.add("/ok", "fine")
    site.fail("/broken", 500, 500, 500)
    config = make_config(site.url("/"), max_depth=1, concurrency=2)

    scheduler, stats = await crawl(config)

    assert site.hits("/broken") == 3
    assert stats.holes == 1
    out = tmp_path / "out" / site.domain.replace(":", "_")
    assert (out / "broken").read_bytes() == b""
    assert (out / "ok.html").read_bytes() == b"fine"
    assert scheduler.monitor.value(
        "sitemirror_download_failures_total", {"reason": "too_many_attempts"}) == 1


async def test_robots_rules_are_enforced(site, make_config):
    site.add("/robots.txt", "User-agent: *\nDisallow: /private/\n", "text/plain")
    site.add("/", '<a href="/private/secret">s</a><a href="/public">p</a>')
    site.add("/private/secret", "secret")
    site.add("/public", "public")
    config = make_config(site.url("/"), max_depth=1, use_robots=True)

    _, stats = await crawl(config)

    assert "/private/secret" not in site.requests
    assert "/public" in site.requests
    assert stats.holes == 1


async def test_robots_not_fetched_when_disabled(site, make_config):
    site.add("/", "home")
    config = make_config(site.url("/"), max_depth=1)

    await crawl(config)

    assert "/robots.txt" not in site.requests


async def test_unavailable_robots_policy_is_fatal(site, make_config):
    site.fail("/robots.txt", 503)
    site.add("/", "home")
    config = make_config(site.url("/"), use_robots=True)

    scheduler = CrawlerScheduler(config)
    try:
        with pytest.raises(RobotsError):
            await scheduler.initialize()
    finally:
        await scheduler.close()

    assert "/" not in site.requests


class ExternalLinkParser(ContentParser):
    """Pretends every page links off-site as well."""

    def extract(self, content, base_url):
        pages, resources = super().extract(content, base_url)
        return pages + ["http://elsewhere.invalid/page"], resources


async def test_off_domain_children_are_rejected(site, make_config):
    site.add("/", '<a href="/a">a</a>')
    site.add("/a", "leaf")
    config = make_config(site.url("/"), max_depth=1)

    _, stats = await crawl(config, parser=ExternalLinkParser())

    assert stats.rejections["external_domain"] == 1
    assert sorted(site.requests) == ["/", "/a"]


class FailingStorage(FileStorage):
    async def save(self, url, content, content_type=""):
        if url.endswith("/a"):
            raise StorageError("disk full")
        return await super().save(url, content, content_type)


async def test_fatal_error_aborts_crawl(site, make_config, tmp_path):
    site.add("/", '<a href="/a">a</a>')
    site.add("/a", "leaf")
    config = make_config(site.url("/"), max_depth=1, concurrency=2)

    with pytest.raises(CrawlError) as exc_info:
        await crawl(config, storage=FailingStorage(str(tmp_path / "out")))

    assert isinstance(exc_info.value.errors[0], StorageError)
    assert "disk full" in str(exc_info.value)


async def test_stop_ends_crawl_without_error(site, make_config):
    site.add("/", '<a href="/slow">slow</a>')
    site.add("/slow", "eventually")
    site.delay("/slow", 3)
    config = make_config(site.url("/"), max_depth=1, shutdown_grace=0.1)

    scheduler = CrawlerScheduler(config)
    await scheduler.initialize()
    try:
        run = asyncio.create_task(scheduler.run())
        while "/slow" not in site.requests:
            await asyncio.sleep(0.01)
        scheduler.stop()
        stats = await asyncio.wait_for(run, timeout=5)
    finally:
        await scheduler.close()

    assert stats.pages_saved == 1
    assert scheduler.queue.closed


async def test_max_duration_bounds_the_crawl(site, make_config):
    site.add("/", '<a href="/slow">slow</a>')
    site.add("/slow", "eventually")
    site.delay("/slow", 3)
    config = make_config(site.url("/"), max_depth=1, max_duration=0.5, shutdown_grace=0.1)

    _, stats = await crawl(config)

    assert stats.pages_saved == 1
