"""Binance Data Source Implementation

Thin async client for the public Binance spot REST API. It serves the fixed
SHIBUSDT trading pair only and performs no retries; a failed request is left
for the next client request to retry through the response cache.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .base import DataSourceError, InvalidResponseError, KlinesQuery, RateLimitError

logger = logging.getLogger(__name__)

BINANCE_API_BASE_URL = "https://api.binance.com/api/v3"
TRADING_SYMBOL = "SHIBUSDT"


class BinanceClient:
    """Binance market data client for a single trading pair"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.base_url = BINANCE_API_BASE_URL
        self.symbol = TRADING_SYMBOL

        # Connection management
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = config.get("timeout", 10)

        logger.info(f"Binance client initialized for {self.symbol} with {self._timeout}s timeout")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        """Close the client and cleanup resources"""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _make_request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make a GET request to the Binance API and decode the JSON body"""
        query = {"symbol": self.symbol}
        if params:
            query.update(params)

        url = f"{self.base_url}/{endpoint}"
        session = await self._get_session()

        try:
            async with session.get(url, params=query) as response:
                if response.status == 200:
                    try:
                        return await response.json()
                    except (aiohttp.ContentTypeError, ValueError) as e:
                        raise InvalidResponseError(f"Malformed response from {endpoint}: {e}", response.status)

                error_text = await response.text()
                if response.status in (418, 429):
                    retry_after = response.headers.get("Retry-After", "unknown")
                    raise RateLimitError(
                        f"Rate limited by Binance, retry after {retry_after} seconds", response.status
                    )
                raise DataSourceError(f"HTTP {response.status}: {error_text}", response.status)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DataSourceError(f"Request to {endpoint} failed: {e!r}")

    async def get_ticker_price(self) -> Dict[str, Any]:
        """Get the latest price ticker for the trading pair"""
        return await self._make_request("ticker/price")

    async def get_24hr_stats(self) -> Dict[str, Any]:
        """Get the rolling 24 hour statistics for the trading pair"""
        return await self._make_request("ticker/24hr")

    async def get_klines(self, query: KlinesQuery) -> List[List[Any]]:
        """Get candlestick data for the trading pair

        Args:
            query: Interval, limit and start time; absent values are not sent
        """
        return await self._make_request("klines", query.to_params())
