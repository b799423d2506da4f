"""Value objects shared by the trading contract, the adapters and the stream engine."""

from .models import (
    Account,
    Asset,
    AssetClass,
    AssetStatus,
    Order,
    OrderAcknowledgment,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    TimeInForce,
    canonical_symbol,
)
from .events import Bar, BookLevel, MarketUpdate, MarketUpdateKind, OrderBook, Quote, Trade

__all__ = [
    "Account",
    "Asset",
    "AssetClass",
    "AssetStatus",
    "Order",
    "OrderAcknowledgment",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "TimeInForce",
    "canonical_symbol",
    "Bar",
    "BookLevel",
    "MarketUpdate",
    "MarketUpdateKind",
    "OrderBook",
    "Quote",
    "Trade",
]
