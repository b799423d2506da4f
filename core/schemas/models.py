# Shared value objects for instruments, orders and accounts.
# Every backend maps its wire format onto these models.

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List


def canonical_symbol(symbol: str) -> str:
    """The only normalization applied to caller-supplied symbols."""
    return symbol.strip().upper()


class TradingBaseModel(BaseModel):
    """Immutable base for all value objects (Pydantic v2)."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)


class AssetClass(str, Enum):
    EQUITY = "equity"
    CRYPTO = "crypto"
    OPTION = "option"
    OTHER = "other"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"

    @property
    def requires_limit_price(self) -> bool:
        return self in (OrderType.LIMIT, OrderType.STOP_LIMIT)

    @property
    def requires_stop_price(self) -> bool:
        return self in (OrderType.STOP, OrderType.STOP_LIMIT)


class TimeInForce(str, Enum):
    DAY = "day"
    GTC = "gtc"
    OPG = "opg"
    CLS = "cls"
    IOC = "ioc"
    FOK = "fok"


class OrderStatus(str, Enum):
    """Order status as reported in the broker's acknowledgment"""
    PENDING = "pending"
    ACCEPTED = "accepted"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Asset(TradingBaseModel):
    """Snapshot of a tradable instrument as returned by a lookup"""
    symbol: str
    name: Optional[str] = None
    exchange: Optional[str] = None
    asset_class: AssetClass = AssetClass.EQUITY
    status: AssetStatus = AssetStatus.ACTIVE
    tradable: bool = True
    fractionable: bool = False
    shortable: bool = False
    marginable: bool = False


class Order(TradingBaseModel):
    """
    A requested trade action, not yet acknowledged by any broker.

    Construction only coerces types; the trading client validates business
    rules (positive quantity, required prices) before submission so that
    violations surface as ValidationError.
    """
    symbol: str
    side: OrderSide
    quantity: Decimal
    order_type: OrderType = OrderType.MARKET
    time_in_force: TimeInForce = TimeInForce.DAY
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    client_order_id: Optional[str] = Field(None, description="Idempotency token, if the backend supports one")
    extended_hours: bool = False

    @property
    def is_fractional(self) -> bool:
        return self.quantity != self.quantity.to_integral_value()


class OrderAcknowledgment(TradingBaseModel):
    """Broker reply to an accepted order submission"""
    order_id: str = Field(..., min_length=1)
    status: OrderStatus
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    symbol: str
    backend: str
    client_order_id: Optional[str] = None


class Position(TradingBaseModel):
    symbol: str
    quantity: Decimal
    average_price: Decimal
    current_price: Optional[Decimal] = None
    unrealized_pnl: Decimal = Decimal("0")


class Account(TradingBaseModel):
    account_id: str
    currency: str = "USD"
    cash: Decimal
    equity: Decimal
    buying_power: Decimal
    positions: List[Position] = Field(default_factory=list)
