import aiohttp
import pytest

from sitemirror.crawler.robots import RobotsError, RobotsPolicy


ROBOTS_TXT = """\
# Comment lines are ignored
User-agent: *
Disallow: /private/
Disallow: /tmp/ /cache/

User-agent: SiteMirror
Disallow: /no-mirror/

User-agent: FriendlyBot
"""


def test_parse_groups_and_accumulates_rules():
    policy = RobotsPolicy.parse(ROBOTS_TXT)

    assert policy.rules["*"] == ("/private/", "/tmp/", "/cache/")
    assert policy.rules["SiteMirror"] == ("/no-mirror/",)
    assert policy.rules["FriendlyBot"] == ()


def test_commented_disallow_is_ignored():
    policy = RobotsPolicy.parse("User-agent: *\n# Disallow: /secret/\n")
    assert policy.is_allowed("AnyBot", "http://example.com/secret/x")


def test_exact_user_agent_group_wins_over_wildcard():
    policy = RobotsPolicy.parse(ROBOTS_TXT)

    assert not policy.is_allowed("SiteMirror", "http://example.com/no-mirror/page")
    assert policy.is_allowed("SiteMirror", "http://example.com/private/page")


def test_unknown_user_agent_falls_back_to_wildcard():
    policy = RobotsPolicy.parse(ROBOTS_TXT)

    assert not policy.is_allowed("OtherBot", "http://example.com/private/x")
    assert not policy.is_allowed("OtherBot", "http://example.com/cache/x")
    assert policy.is_allowed("OtherBot", "http://example.com/public/x")


def test_group_without_rules_denies_nothing():
    policy = RobotsPolicy.parse(ROBOTS_TXT)
    assert policy.is_allowed("FriendlyBot", "http://example.com/private/x")


def test_no_matching_group_allows():
    policy = RobotsPolicy({"GoogleBot": ("/",)})
    assert policy.is_allowed("SiteMirror", "http://example.com/anything")


def test_rules_match_as_substrings():
    policy = RobotsPolicy({"*": ("private",)})
    assert not policy.is_allowed("SiteMirror", "http://example.com/a/private-notes")


def test_empty_policy_allows_everything():
    assert RobotsPolicy.empty().is_allowed("SiteMirror", "http://example.com/private/")


async def test_fetch_parses_robots_file(site):
    site.add("/robots.txt", ROBOTS_TXT, "text/plain")

    async with aiohttp.ClientSession() as session:
        policy = await RobotsPolicy.fetch(session, site.domain)

    assert site.hits("/robots.txt") == 1
    assert not policy.is_allowed("SiteMirror", site.url("/no-mirror/"))


async def test_fetch_missing_file_yields_permissive_policy(site):
    async with aiohttp.ClientSession() as session:
        policy = await RobotsPolicy.fetch(session, site.domain)

    assert policy.rules == {}
    assert policy.is_allowed("SiteMirror", site.url("/private/"))


async def test_fetch_server_error_is_fatal(site):
    site.fail("/robots.txt", 500)

    async with aiohttp.ClientSession() as session:
        with pytest.raises(RobotsError):
            await RobotsPolicy.fetch(session, site.domain)


async def test_fetch_transport_failure_is_fatal(dead_domain):
    async with aiohttp.ClientSession() as session:
        with pytest.raises(RobotsError):
            await RobotsPolicy.fetch(session, dead_domain, timeout=2)
