"""
File storage for mirrored content.
Maps each URL to a path under ``<output>/<host>/`` and writes the raw bytes.
"""

import logging
import posixpath
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse


class StorageError(Exception):
    """Custom exception for storage operations."""
    pass


# Extension for a response whose URL carries a query string
MIME_EXTENSIONS = {
    'text/html': '.html',
    'text/css': '.css',
    'application/javascript': '.js',
    'text/javascript': '.js',
    'image/jpeg': '.jpg',
    'image/png': '.png',
}
DEFAULT_EXTENSION = '.html'


def extension_for(content_type: str) -> str:
    """Pick a file extension from a Content-Type header value."""
    mime = content_type.split(';')[0].strip().lower()
    return MIME_EXTENSIONS.get(mime, DEFAULT_EXTENSION)


class FileStorage:
    """Writes downloaded content into a directory tree mirroring the site."""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
            'total_size_bytes': 0
        }

    async def initialize(self):
        """Create the output directory."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"File storage initialized at {self.output_dir}")
        except OSError as e:
            raise StorageError(f"Failed to initialize file storage: {e}") from e

    def path_for(self, url: str, content_type: str = '') -> Path:
        """
        Map a URL to its local file path.

        ``/`` becomes ``index.html`` and a trailing slash gets ``index.html``
        appended. With a query string the dots of the path and the ``&`` of
        the query turn into underscores and an extension is taken from the
        content type. Without one, ``.html`` is appended to extensionless
        HTML documents.
        """
        parsed = urlparse(url)
        host_dir = parsed.netloc.lower().replace(':', '_')
        if not host_dir:
            raise StorageError(f"URL has no host: {url}")

        path = parsed.path
        if path in ('', '/'):
            path = 'index.html'
        elif path.endswith('/'):
            path += 'index.html'

        if parsed.query:
            path = (path.replace('.', '_') + '_' +
                    parsed.query.replace('&', '_') + extension_for(content_type))
        elif not posixpath.splitext(path)[1] and content_type.startswith('text/html'):
            path += '.html'

        relative = posixpath.normpath(path.lstrip('/'))
        if relative.startswith('..') or posixpath.isabs(relative):
            raise StorageError(f"URL path escapes the output directory: {url}")

        return self.output_dir / host_dir / Path(*relative.split('/'))

    async def save(self, url: str, content: bytes, content_type: str = '') -> Path:
        """Write content for a URL, creating directories as needed."""
        file_path = self.path_for(url, content_type)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'wb') as f:
                f.write(content)
        except OSError as e:
            self.stats['storage_errors'] += 1
            raise StorageError(f"Error storing content for {url}: {e}") from e

        self.stats['total_stored'] += 1
        self.stats['total_size_bytes'] += len(content)
        self.logger.debug(f"Stored {url} to {file_path}")
        return file_path

    def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        return self.stats.copy()
