"""SHIB Price Proxy - cached Binance market data for SHIBUSDT"""

__version__ = "1.0.0"
