"""
SiteMirror

Mirrors a single web site to disk with a concurrent breadth-first crawler.
"""

__version__ = "1.0.0"
__description__ = "Concurrent single-domain site mirroring crawler"
