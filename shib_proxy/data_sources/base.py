"""Upstream Data Models and Errors

This module defines the query record and exception hierarchy shared by the
upstream market data client and the API layer.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..caching.response_cache import derive_klines_key


class KlineInterval(str, Enum):
    """Candlestick intervals accepted by the Binance klines endpoint"""
    ONE_SECOND = "1s"
    ONE_MINUTE = "1m"
    THREE_MINUTES = "3m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    TWO_HOURS = "2h"
    FOUR_HOURS = "4h"
    SIX_HOURS = "6h"
    EIGHT_HOURS = "8h"
    TWELVE_HOURS = "12h"
    ONE_DAY = "1d"
    THREE_DAYS = "3d"
    ONE_WEEK = "1w"
    ONE_MONTH = "1M"


class KlinesQuery(BaseModel):
    """Validated query parameters for a klines request"""
    interval: Optional[KlineInterval] = None
    limit: Optional[int] = None
    start_time: Optional[int] = None

    def cache_key(self) -> str:
        """Composite cache key for this parameter tuple"""
        interval = self.interval.value if self.interval is not None else None
        return derive_klines_key(interval, self.limit, self.start_time)

    def to_params(self) -> Dict[str, Any]:
        """Upstream query parameters, absent values omitted"""
        params: Dict[str, Any] = {}
        if self.interval is not None:
            params["interval"] = self.interval.value
        if self.limit is not None:
            params["limit"] = self.limit
        if self.start_time is not None:
            params["startTime"] = self.start_time
        return params


class DataSourceError(Exception):
    """Base exception for upstream data source errors"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitError(DataSourceError):
    """Raised when the upstream rejects a request for exceeding its limits"""
    pass


class InvalidResponseError(DataSourceError):
    """Raised when the upstream answers with a body that is not JSON"""
    pass
