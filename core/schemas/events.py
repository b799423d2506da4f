# Market data update models delivered through subscription handles

from pydantic import Field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Union, Literal

from core.schemas.models import TradingBaseModel


class MarketUpdateKind(str, Enum):
    TRADE = "trade"
    QUOTE = "quote"
    BAR = "bar"
    UPDATED_BAR = "updated_bar"
    DAILY_BAR = "daily_bar"
    ORDER_BOOK = "order_book"


class Trade(TradingBaseModel):
    kind: Literal[MarketUpdateKind.TRADE] = MarketUpdateKind.TRADE
    symbol: str
    price: Decimal
    size: Decimal
    timestamp: datetime
    exchange: Optional[str] = None
    trade_id: Optional[str] = None


class Quote(TradingBaseModel):
    kind: Literal[MarketUpdateKind.QUOTE] = MarketUpdateKind.QUOTE
    symbol: str
    bid_price: Decimal
    bid_size: Decimal
    ask_price: Decimal
    ask_size: Decimal
    timestamp: datetime


class Bar(TradingBaseModel):
    """Minute, updated or daily bar"""
    kind: Literal[MarketUpdateKind.BAR, MarketUpdateKind.UPDATED_BAR, MarketUpdateKind.DAILY_BAR] = MarketUpdateKind.BAR
    symbol: str
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    timestamp: datetime


class BookLevel(TradingBaseModel):
    price: Decimal
    size: Decimal


class OrderBook(TradingBaseModel):
    kind: Literal[MarketUpdateKind.ORDER_BOOK] = MarketUpdateKind.ORDER_BOOK
    symbol: str
    bids: List[BookLevel] = Field(default_factory=list)
    asks: List[BookLevel] = Field(default_factory=list)
    timestamp: datetime


MarketUpdate = Union[Trade, Quote, Bar, OrderBook]
