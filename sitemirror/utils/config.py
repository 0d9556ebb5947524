"""
Configuration management for the site mirror.
"""

import yaml
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Any, Optional
from urllib.parse import urlparse


LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigError(ValueError):
    """Raised for missing or invalid configuration values."""
    pass


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    start_url: str = ""
    output_dir: str = "./"
    max_depth: int = 5
    concurrency: int = 5
    use_robots: bool = False
    user_agent: str = "SiteMirror"
    request_timeout: float = 30
    max_attempts: int = 3
    retry_delay: float = 1.0
    queue_capacity: int = 1000
    max_duration: Optional[float] = None
    stats_interval: float = 30.0
    shutdown_grace: float = 10.0

    @property
    def domain(self) -> str:
        """Host (with port, if any) the crawl is scoped to."""
        return urlparse(self.start_url).netloc.lower()


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _build_section(cls, data: Optional[Dict[str, Any]], section: str):
    """Create a config dataclass, rejecting keys it does not know."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{section}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section '{section}': {', '.join(sorted(unknown))}")
    return cls(**data)


class ConfigManager:
    """
    Loads configuration from an optional YAML file plus explicit overrides.

    Overrides are keyed by section, e.g. ``{'crawler': {'max_depth': 2}}``;
    ``None`` values are ignored so unset command-line flags do not clobber
    file values.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.logger = logging.getLogger(__name__)

    def load_config(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Config:
        """Load, merge and validate the configuration."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigError(f"Configuration file not found: {self.config_path}")
            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}
            if not isinstance(config_data, dict):
                raise ConfigError(f"Configuration file must contain a mapping: {self.config_path}")

        unknown = set(config_data) - {'crawler', 'logging', 'monitoring'}
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        config = Config(
            crawler=_build_section(CrawlerConfig, config_data.get('crawler'), 'crawler'),
            logging=_build_section(LoggingConfig, config_data.get('logging'), 'logging'),
            monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring'),
        )

        for section, values in (overrides or {}).items():
            current = getattr(config, section, None)
            if current is None:
                raise ConfigError(f"Unknown configuration section: {section}")
            values = {k: v for k, v in values.items() if v is not None}
            try:
                setattr(config, section, replace(current, **values))
            except TypeError as e:
                raise ConfigError(str(e)) from e

        validate_config(config)
        return config


def validate_config(config: Config):
    """Validate configuration values."""
    crawler = config.crawler

    # Validate start URL
    if not crawler.start_url:
        raise ConfigError("A start URL must be provided")
    parsed = urlparse(crawler.start_url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigError(f"Malformed start URL: {crawler.start_url!r}")

    # Validate numeric values
    if crawler.max_depth < 0:
        raise ConfigError("max_depth must be non-negative")

    if crawler.concurrency < 1:
        raise ConfigError("concurrency must be at least 1")

    if crawler.queue_capacity < 1:
        raise ConfigError("queue_capacity must be at least 1")

    if crawler.max_attempts < 1:
        raise ConfigError("max_attempts must be at least 1")

    for name in ('request_timeout', 'retry_delay', 'stats_interval', 'shutdown_grace'):
        if getattr(crawler, name) < 0:
            raise ConfigError(f"{name} must be non-negative")

    if crawler.max_duration is not None and crawler.max_duration <= 0:
        raise ConfigError("max_duration must be positive")

    if config.logging.level.upper() not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level: {config.logging.level}")


def load_config(config_path: Optional[str] = None,
                overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Config:
    """Load configuration from file and overrides."""
    return ConfigManager(config_path).load_config(overrides)
