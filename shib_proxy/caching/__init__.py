"""
Caching Module for SHIB Price Proxy

Provides the time-bounded in-memory response cache shared by all API routes
"""

from .response_cache import (
    ResponseCache,
    CacheDomain,
    CacheEntry,
    CacheStats,
    CacheFetchError,
    derive_klines_key,
    CACHE_DURATION_MS
)

__all__ = [
    "ResponseCache",
    "CacheDomain",
    "CacheEntry",
    "CacheStats",
    "CacheFetchError",
    "derive_klines_key",
    "CACHE_DURATION_MS"
]
