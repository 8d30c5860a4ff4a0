"""Data Sources Package - Upstream market data connectors"""

from .base import KlinesQuery, KlineInterval, DataSourceError, RateLimitError, InvalidResponseError
from .binance_source import BinanceClient, BINANCE_API_BASE_URL, TRADING_SYMBOL

__all__ = [
    "KlinesQuery",
    "KlineInterval",
    "DataSourceError",
    "RateLimitError",
    "InvalidResponseError",
    "BinanceClient",
    "BINANCE_API_BASE_URL",
    "TRADING_SYMBOL"
]
