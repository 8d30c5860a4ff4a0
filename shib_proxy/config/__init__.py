"""Configuration Package"""

from .config_manager import (
    Config,
    APIConfig,
    UpstreamConfig,
    CacheConfig,
    LoggingConfig,
    ConfigManager,
    load_config,
    get_config
)

__all__ = [
    "Config",
    "APIConfig",
    "UpstreamConfig",
    "CacheConfig",
    "LoggingConfig",
    "ConfigManager",
    "load_config",
    "get_config"
]
