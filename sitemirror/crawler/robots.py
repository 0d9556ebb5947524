"""
robots.txt exclusion policy for the crawled domain.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from aiohttp import ClientError, ClientSession, ClientTimeout


logger = logging.getLogger(__name__)


class RobotsError(Exception):
    """Raised when the exclusion rules of a domain cannot be determined."""
    pass


class RobotsPolicy:
    """
    Per user-agent disallow rules.

    Matching is deliberately simple: a URL is denied when its string form
    contains any rule of the selected group. Wildcards and ``$`` anchors of
    the full exclusion standard are not interpreted.
    """

    WILDCARD = "*"

    def __init__(self, rules: Optional[Mapping[str, Tuple[str, ...]]] = None):
        self._rules = MappingProxyType(
            {agent: tuple(group) for agent, group in (rules or {}).items()}
        )

    @property
    def rules(self) -> Mapping[str, Tuple[str, ...]]:
        return self._rules

    @classmethod
    def empty(cls) -> "RobotsPolicy":
        """Policy that allows everything."""
        return cls()

    @classmethod
    def parse(cls, text: str) -> "RobotsPolicy":
        """Build a policy from robots.txt content."""
        rules: Dict[str, List[str]] = {}
        user_agent = ""

        for raw_line in text.splitlines():
            if raw_line.startswith("#"):
                continue

            line = raw_line.strip()
            if raw_line.startswith("User-agent:"):
                user_agent = line[len("User-agent:"):].strip()
                rules.setdefault(user_agent, [])
                continue

            if "Disallow:" in line:
                value = line.split("Disallow:", 1)[1]
                rules.setdefault(user_agent, []).extend(value.split())

        return cls(rules)

    @classmethod
    async def fetch(cls, session: ClientSession, domain: str,
                    timeout: float = 30) -> "RobotsPolicy":
        """
        Fetch and parse ``http://<domain>/robots.txt``.

        A missing file (404) yields a permissive policy. Any other failure
        raises RobotsError because the crawl cannot honor rules it never saw.
        """
        robots_url = f"http://{domain}/robots.txt"
        try:
            async with session.get(robots_url, timeout=ClientTimeout(total=timeout)) as response:
                if response.status == 404:
                    logger.info(f"No robots.txt at {robots_url}, allowing everything")
                    return cls.empty()
                if response.status != 200:
                    raise RobotsError(
                        f"Unexpected status {response.status} fetching {robots_url}"
                    )
                text = await response.text(errors="replace")
        except (ClientError, asyncio.TimeoutError) as e:
            raise RobotsError(f"Could not fetch {robots_url}: {e}") from e

        policy = cls.parse(text)
        logger.info(f"Loaded robots.txt from {robots_url} ({len(policy.rules)} groups)")
        return policy

    def is_allowed(self, user_agent: str, url: str) -> bool:
        """Check whether ``user_agent`` may fetch ``url``."""
        group = self._rules.get(user_agent)
        if group is None:
            group = self._rules.get(self.WILDCARD)
            if group is None:
                return True

        return not any(rule in url for rule in group)
