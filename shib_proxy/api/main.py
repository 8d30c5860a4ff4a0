"""Main Application Entry Point

This module provides the main entry point for running the SHIB Price Proxy API server.
It can be run directly or used with uvicorn for production deployment.
"""

import uvicorn
import os
import logging
from logging.handlers import RotatingFileHandler
from dotenv import load_dotenv

from ..config.config_manager import LoggingConfig, load_config

logger = logging.getLogger(__name__)


def setup_logging(log_config: LoggingConfig):
    """Setup logging based on configuration"""
    logging.basicConfig(
        level=getattr(logging, log_config.level.upper(), logging.INFO),
        format=log_config.format,
        force=True  # Override any existing configuration
    )

    if log_config.file_enabled:
        log_dir = os.path.dirname(log_config.file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_config.file_path,
            maxBytes=log_config.max_file_size,
            backupCount=log_config.backup_count
        )
        file_handler.setFormatter(logging.Formatter(log_config.format))
        logging.getLogger().addHandler(file_handler)


def main():
    """Main function to run the API server"""
    # Load environment variables from .env file
    load_dotenv()

    config = load_config(os.getenv("CONFIG_FILE", "config.yaml"))
    setup_logging(config.logging)
    api_config = config.api

    try:
        logger.info(f"Server running on port {api_config.port}")
        logger.info(f"Environment: {config.environment}")
        logger.info(f"Debug mode: {config.debug}")

        uvicorn.run(
            "shib_proxy.api.endpoints:app",
            host=api_config.host,
            port=api_config.port,
            reload=api_config.reload,
            log_level=api_config.log_level.lower()
        )

    except Exception as e:
        logger.error(f"Failed to start API server: {e}")
        raise


if __name__ == "__main__":
    main()
