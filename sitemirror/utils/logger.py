"""
Logging utilities for the site mirror.
"""

import logging
import logging.handlers
import json
import platform
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

import psutil

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Context added through CrawlerLogAdapter
        for key in ('worker', 'url', 'event_type'):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that adds crawler-specific context."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Prefix messages with the worker id and attach the context."""
        extra = dict(self.extra)
        extra.update(kwargs.get('extra', {}))
        kwargs['extra'] = extra

        worker = self.extra.get('worker')
        if worker:
            msg = f"[{worker}] {msg}"
        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log URL-specific events."""
        extra = kwargs.get('extra', {})
        extra['url'] = url
        extra['event_type'] = 'url_event'
        kwargs['extra'] = extra
        self.log(level, message, **kwargs)


class PerformanceFilter(logging.Filter):
    """Filter to suppress noisy third-party logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'aiohttp.internal',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        return not any(record.name.startswith(module) for module in self.suppress_modules)


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """
    Setup logging for the crawler.

    Progress goes to stdout; a rotating log file is added when
    ``config.file`` is set.

    Args:
        config: Logging configuration

    Returns:
        Configured root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Clear existing handlers
    root_logger.handlers.clear()

    if config.json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PerformanceFilter())
        root_logger.addHandler(file_handler)

    # Configure third-party loggers
    for logger_name in ('aiohttp', 'asyncio', 'urllib3'):
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.debug(f"Logging initialized (level={config.level}, file={config.file}, json={config.json})")
    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """
    Get a crawler-specific logger with additional context.

    Args:
        name: Logger name
        **extra_context: Additional context fields to include in all log messages

    Returns:
        CrawlerLogAdapter instance
    """
    logger = logging.getLogger(name)
    return CrawlerLogAdapter(logger, extra_context)


def log_system_info():
    """Log system and environment information."""
    logger = logging.getLogger(__name__)

    logger.debug("=== SYSTEM INFORMATION ===")
    logger.debug(f"Platform: {platform.platform()}")
    logger.debug(f"Python version: {sys.version}")
    logger.debug(f"CPU cores: {psutil.cpu_count()}")
    logger.debug(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
