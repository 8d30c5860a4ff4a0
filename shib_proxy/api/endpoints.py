"""API Endpoints

This module exposes the cached SHIBUSDT price, 24 hour statistics and
candlestick endpoints using FastAPI. Every market data route goes through the
shared ResponseCache so repeated requests inside the freshness window never
reach Binance.
"""

from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime, timezone
from typing import Optional
import logging
import os

from ..caching.response_cache import ResponseCache, CacheDomain, CacheFetchError
from ..config.config_manager import load_config
from ..data_sources.base import KlineInterval, KlinesQuery
from ..data_sources.binance_source import BinanceClient

logger = logging.getLogger(__name__)

settings = load_config(os.getenv("CONFIG_FILE", "config.yaml"))

# Shared instances (initialized on startup)
response_cache: Optional[ResponseCache] = None
market_client: Optional[BinanceClient] = None


def get_response_cache() -> ResponseCache:
    """Dependency to get the response cache instance"""
    if response_cache is None:
        raise HTTPException(status_code=500, detail="Response cache not initialized")
    return response_cache


def get_market_client() -> BinanceClient:
    """Dependency to get the Binance client instance"""
    if market_client is None:
        raise HTTPException(status_code=500, detail="Market client not initialized")
    return market_client


def get_klines_query(
    interval: Optional[KlineInterval] = Query(None, description="Candlestick interval (e.g., 1m, 1h, 1d)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Number of candles to return"),
    start_time: Optional[int] = Query(None, alias="startTime", ge=0, description="Start time in epoch milliseconds")
) -> KlinesQuery:
    """Dependency building the typed klines query from request parameters"""
    return KlinesQuery(interval=interval, limit=limit, start_time=start_time)


app = FastAPI(
    title="SHIB Price Proxy",
    description="Cached proxy for Binance SHIBUSDT market data",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
    openapi_url=None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_methods=["GET"]
)


@app.on_event("startup")
async def startup_event():
    """Create the response cache and the upstream client"""
    global response_cache, market_client

    logger.info(f"Loaded configuration for environment: {settings.environment}")

    response_cache = ResponseCache(
        single_flight=settings.cache.single_flight,
        klines_max_entries=settings.cache.klines_max_entries
    )
    market_client = BinanceClient({"timeout": settings.upstream.timeout})

    logger.info("SHIB Price Proxy API started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    global market_client
    if market_client:
        await market_client.close()
        logger.info("SHIB Price Proxy API shutdown completed")


def _fetch_failed(error: CacheFetchError) -> JSONResponse:
    content = {"error": str(error)}
    if error.__cause__ is not None:
        content["details"] = str(error.__cause__)
    return JSONResponse(status_code=500, content=content)


@app.get("/api/price")
async def get_price(
    cache: ResponseCache = Depends(get_response_cache),
    client: BinanceClient = Depends(get_market_client)
):
    """Get the latest SHIBUSDT price"""
    try:
        payload = await cache.get_or_fetch(CacheDomain.PRICE, None, client.get_ticker_price)
    except CacheFetchError as e:
        return _fetch_failed(e)
    return JSONResponse(content=payload)


@app.get("/api/stats")
async def get_stats(
    cache: ResponseCache = Depends(get_response_cache),
    client: BinanceClient = Depends(get_market_client)
):
    """Get rolling 24 hour SHIBUSDT statistics"""
    try:
        payload = await cache.get_or_fetch(CacheDomain.STATS, None, client.get_24hr_stats)
    except CacheFetchError as e:
        return _fetch_failed(e)
    return JSONResponse(content=payload)


@app.get("/api/klines")
async def get_klines(
    query: KlinesQuery = Depends(get_klines_query),
    cache: ResponseCache = Depends(get_response_cache),
    client: BinanceClient = Depends(get_market_client)
):
    """Get SHIBUSDT candlesticks for the requested interval, limit and start time"""

    async def fetch_klines():
        return await client.get_klines(query)

    try:
        payload = await cache.get_or_fetch(CacheDomain.KLINES, query.cache_key(), fetch_klines)
    except CacheFetchError as e:
        return _fetch_failed(e)
    return JSONResponse(content=payload)


@app.get("/health")
async def health_check():
    """Liveness check endpoint"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "env": settings.environment,
        "port": settings.api.port
    }


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Render HTTP errors with an ``error`` field; only GET routes exist"""
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"error": "Route not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Treat malformed query parameters as unroutable, before they reach the cache"""
    details = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=404,
        content={"error": "Invalid query parameters", "details": "; ".join(details)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
