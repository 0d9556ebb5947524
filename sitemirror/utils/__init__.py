"""
Utility modules for the site mirror.
"""

from .config import Config, ConfigError, ConfigManager, load_config

__all__ = ['Config', 'ConfigError', 'ConfigManager', 'load_config']
