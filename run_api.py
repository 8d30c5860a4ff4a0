#!/usr/bin/env python3
"""
SHIB Price Proxy API Runner

Simple script to start the SHIB Price Proxy API server.
Usage:
    python run_api.py

Environment Variables:
    PORT: Port to bind to (default: 3000)
    API_HOST: Host to bind to (default: 0.0.0.0)
    CONFIG_FILE: YAML configuration file (default: config.yaml)
    ENVIRONMENT: Reported by /health (default: development)
"""

import sys
import os

# Add project root to Python path
project_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, project_root)

from shib_proxy.api.main import main

if __name__ == "__main__":
    main()
