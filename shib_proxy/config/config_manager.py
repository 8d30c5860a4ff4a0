"""Configuration Manager

This module provides centralized configuration management for the SHIB Price Proxy.
It supports YAML configuration files, environment variable overrides, and validation.
"""

import os
import yaml
from typing import Dict, Any, Optional, Union, List
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = ["https://dubplanet.github.io", "http://localhost:3000"]


@dataclass
class APIConfig:
    """Configuration for the API server"""
    host: str = "0.0.0.0"
    port: int = 3000
    reload: bool = False
    log_level: str = "info"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))


@dataclass
class UpstreamConfig:
    """Configuration for the Binance client"""
    timeout: int = 10  # seconds


@dataclass
class CacheConfig:
    """Configuration for the response cache"""
    single_flight: bool = False
    klines_max_entries: int = 0  # 0 = unbounded


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_enabled: bool = False
    file_path: str = "logs/shib_proxy.log"
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration class"""
    api: APIConfig = field(default_factory=APIConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Global settings
    environment: str = "development"
    debug: bool = False


class ConfigManager:
    """Manages application configuration from multiple sources"""

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_file: Path to YAML configuration file
        """
        self.config_file = config_file
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from file and environment variables

        Returns:
            Loaded configuration object
        """
        # Start with default configuration
        config_dict = self._get_default_config()

        # Load from YAML file if specified
        if self.config_file and os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    file_config = yaml.safe_load(f)
                    if file_config:
                        config_dict = self._merge_configs(config_dict, file_config)
                logger.info(f"Loaded configuration from {self.config_file}")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")

        # Override with environment variables
        config_dict = self._apply_env_overrides(config_dict)

        # Validate and create config object
        self._config = self._create_config_object(config_dict)
        self._validate_config(self._config)

        logger.info(f"Configuration loaded for environment: {self._config.environment}")
        return self._config

    def get_config(self) -> Config:
        """Get the current configuration

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration as dictionary"""
        return self._dataclass_to_dict(Config())

    def _dataclass_to_dict(self, obj) -> Dict[str, Any]:
        """Convert dataclass to dictionary recursively"""
        result = {}
        for field_name, field_value in obj.__dict__.items():
            if hasattr(field_value, '__dict__'):
                # Nested dataclass
                result[field_name] = self._dataclass_to_dict(field_value)
            elif isinstance(field_value, list):
                result[field_name] = list(field_value)
            else:
                result[field_name] = field_value
        return result

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""
        env_mappings = {
            # Global
            'ENVIRONMENT': ['environment'],
            'DEBUG': ['debug'],

            # API (PORT wins over API_PORT when both are set)
            'API_HOST': ['api', 'host'],
            'API_PORT': ['api', 'port'],
            'PORT': ['api', 'port'],
            'API_RELOAD': ['api', 'reload'],
            'API_LOG_LEVEL': ['api', 'log_level'],

            # Upstream
            'UPSTREAM_TIMEOUT': ['upstream', 'timeout'],

            # Cache
            'CACHE_SINGLE_FLIGHT': ['cache', 'single_flight'],
            'CACHE_KLINES_MAX_ENTRIES': ['cache', 'klines_max_entries'],

            # Logging
            'LOG_LEVEL': ['logging', 'level'],
            'LOG_FILE_ENABLED': ['logging', 'file_enabled'],
            'LOG_FILE_PATH': ['logging', 'file_path'],
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config, config_path, self._convert_env_value(env_value))

        return config

    def _set_nested_value(self, config: Dict[str, Any], path: List[str], value: Any):
        """Set a nested configuration value"""
        current = config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _convert_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Number conversion
        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _create_config_object(self, config_dict: Dict[str, Any]) -> Config:
        """Create Config object from dictionary"""
        try:
            return Config(
                api=APIConfig(**config_dict.get('api', {})),
                upstream=UpstreamConfig(**config_dict.get('upstream', {})),
                cache=CacheConfig(**config_dict.get('cache', {})),
                logging=LoggingConfig(**config_dict.get('logging', {})),
                environment=config_dict.get('environment', 'development'),
                debug=config_dict.get('debug', False)
            )

        except TypeError as e:
            logger.error(f"Failed to create config object: {e}")
            raise ValueError(f"Invalid configuration: {e}")

    def _validate_config(self, config: Config):
        """Validate configuration values"""
        errors = []

        if not isinstance(config.api.port, int) or config.api.port < 1 or config.api.port > 65535:
            errors.append("API port must be between 1 and 65535")

        if not isinstance(config.upstream.timeout, (int, float)) or config.upstream.timeout <= 0:
            errors.append("Upstream timeout must be positive")

        if not isinstance(config.cache.klines_max_entries, int) or config.cache.klines_max_entries < 0:
            errors.append("Klines max entries must be a non-negative integer")

        if not config.api.cors_origins:
            errors.append("At least one CORS origin must be allowed")

        if errors:
            raise ValueError("Configuration validation errors: " + "; ".join(errors))

        logger.info("Configuration validation passed")

    def save_sample_config(self, file_path: str):
        """Save a sample configuration file

        Args:
            file_path: Path where to save the sample config
        """
        sample_yaml = """# SHIB Price Proxy Configuration

# Global settings
environment: development  # development, staging, production
debug: false

# API server configuration
api:
  host: "0.0.0.0"
  port: 3000  # Overridden by the PORT environment variable
  reload: false
  log_level: "info"
  cors_origins:
    - "https://dubplanet.github.io"
    - "http://localhost:3000"

# Binance client configuration
upstream:
  timeout: 10  # seconds

# Response cache configuration (freshness window is fixed at 5000ms)
cache:
  single_flight: false     # Share one upstream call between concurrent misses
  klines_max_entries: 0    # 0 = unbounded, otherwise least-recently-used eviction

# Logging configuration
logging:
  level: "INFO"
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  file_enabled: false
  file_path: "logs/shib_proxy.log"
  max_file_size: 10485760  # 10MB
  backup_count: 5
"""

        try:
            directory = os.path.dirname(file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(file_path, 'w') as f:
                f.write(sample_yaml)

            logger.info(f"Sample configuration saved to {file_path}")

        except OSError as e:
            logger.error(f"Failed to save sample config: {e}")
            raise


# Global configuration manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the current configuration"""
    return config_manager.get_config()


def load_config(config_file: Optional[str] = None) -> Config:
    """Load configuration from file and environment

    Args:
        config_file: Optional path to configuration file

    Returns:
        Loaded configuration object
    """
    global config_manager
    config_manager = ConfigManager(config_file)
    return config_manager.load()
