"""
Trading contract: the client facade, the adapter protocols and the factory
that binds a configuration to a registered backend.
"""

from .interfaces import BackendCapabilities, BrokerAdapter, MarketStream
from .validation import validate_order, validate_symbol
from .client import TradingClient
from .factory import ClientFactory, available_backends, build_client, register_backend

__all__ = [
    "BackendCapabilities",
    "BrokerAdapter",
    "MarketStream",
    "validate_order",
    "validate_symbol",
    "TradingClient",
    "ClientFactory",
    "available_backends",
    "build_client",
    "register_backend",
]
