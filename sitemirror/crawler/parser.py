"""
HTML parser extracting same-domain page links and page resources.
"""

import logging
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse, urlunparse
from bs4 import BeautifulSoup


class ParseError(Exception):
    """Raised when content cannot be parsed as HTML."""
    pass


class ContentParser:
    """
    Extracts crawlable URLs from HTML.

    Pages come from ``<a href>``; resources from the ``src`` of images,
    scripts and media sources, and from stylesheet ``<link>`` tags. Only
    URLs on the same host as the base URL are returned, in document order.
    """

    RESOURCE_TAGS = ['img', 'script', 'source', 'link']

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def extract(self, content: bytes, base_url: str) -> Tuple[List[str], List[str]]:
        """
        Extract page and resource URLs.

        Args:
            content: Raw HTML bytes
            base_url: URL the content was downloaded from

        Returns:
            Tuple of (pages, resources), both absolute URLs
        """
        if not content:
            return [], []

        try:
            soup = BeautifulSoup(content, self.features)
        except Exception as e:
            raise ParseError(f"Cannot parse content of {base_url}: {e}") from e

        base_host = urlparse(base_url).netloc.lower()
        pages: List[str] = []
        resources: List[str] = []

        for tag in soup.find_all(['a'] + self.RESOURCE_TAGS):
            if tag.name == 'a':
                url = self._page_url(tag.get('href'), base_url, base_host)
                if url and url not in pages:
                    pages.append(url)
                continue

            for candidate in self._resource_refs(tag):
                url = self._resolve(candidate, base_url, base_host)
                if url and url not in resources:
                    resources.append(url)

        self.logger.debug(f"Extracted {len(pages)} pages and {len(resources)} resources from {base_url}")
        return pages, resources

    def _page_url(self, href: Optional[str], base_url: str, base_host: str) -> Optional[str]:
        if not href:
            return None
        href = href.strip()
        # Fragment-only links point back into the same document
        if not href or href.startswith('#'):
            return None
        return self._resolve(href, base_url, base_host)

    def _resource_refs(self, tag) -> List[str]:
        refs = []
        src = tag.get('src')
        if src:
            refs.append(src)
        if tag.name == 'link':
            rel = tag.get('rel') or []
            if isinstance(rel, str):
                rel = rel.split()
            if 'stylesheet' not in [r.lower() for r in rel]:
                return []
            href = tag.get('href')
            if href:
                refs.append(href)
        return refs

    def _resolve(self, ref: str, base_url: str, base_host: str) -> Optional[str]:
        """Resolve a reference and keep it only if it stays on ``base_host``."""
        ref = ref.strip()
        if not ref:
            return None
        try:
            parsed = urlparse(urljoin(base_url, ref))
        except ValueError:
            return None

        if parsed.scheme not in ('http', 'https'):
            return None
        if parsed.netloc.lower() != base_host:
            return None

        return self._normalize_url(parsed)

    def _normalize_url(self, parsed) -> str:
        """Drop the fragment, lower-case the host, use '/' for an empty path."""
        return urlunparse((
            parsed.scheme,
            parsed.netloc.lower(),
            parsed.path or '/',
            parsed.params,
            parsed.query,
            ''
        ))
