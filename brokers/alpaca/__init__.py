"""Alpaca backend: REST trading API plus the market data websocket."""

from .adapter import AlpacaAdapter
from .stream import AlpacaMarketStream

__all__ = ["AlpacaAdapter", "AlpacaMarketStream"]
