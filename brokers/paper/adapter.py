from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Set

from core.config.settings import ClientConfig
from core.logging import bind_broker_context, get_trading_logger_safe
from core.schemas.events import Bar, MarketUpdate, Quote, Trade
from core.schemas.models import (
    Account,
    Asset,
    AssetClass,
    Order,
    OrderAcknowledgment,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
)
from core.trading.factory import register_backend
from core.trading.interfaces import BackendCapabilities
from core.utils.exceptions import (
    ConfigurationError,
    DuplicateOrderError,
    InsufficientFundsError,
    MarketClosedError,
    NotFoundError,
    NotTradableError,
    OrderRejectedError,
    UnknownSymbolError,
)
from core.utils.ids import generate_event_id

from .stream import PaperMarketStream

DEFAULT_SYMBOLS = "AAPL,MSFT,SPY"
DEFAULT_STARTING_CASH = "100000"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_TERMINAL = {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.EXPIRED}


def _split(value: Optional[str]) -> List[str]:
    return [part.strip().upper() for part in (value or "").split(",") if part.strip()]


def _parse_bool(value: str, field: str) -> bool:
    text = value.strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"Expected a boolean for {field}", config_field=f"options.{field}",
                             config_value=value)


def _parse_decimal(value: str, field: str) -> Decimal:
    try:
        parsed = Decimal(value)
    except InvalidOperation as e:
        raise ConfigurationError(f"Expected a number for {field}", config_field=f"options.{field}",
                                 config_value=value) from e
    if not parsed.is_finite() or parsed < 0:
        raise ConfigurationError(f"{field} must be a non-negative number", config_field=f"options.{field}",
                                 config_value=value)
    return parsed


def _parse_prices(value: Optional[str]) -> Dict[str, Decimal]:
    """Parse "AAPL:150.25,MSFT:310" into a price map."""
    prices = {}
    for item in _split(value):
        symbol, sep, price = item.partition(":")
        if not sep or not symbol:
            raise ConfigurationError("Prices must be given as SYMBOL:PRICE", config_field="options.prices",
                                     config_value=value)
        prices[symbol] = _parse_decimal(price, "prices")
    return prices


@register_backend("paper")
class PaperAdapter:
    """
    Simulated broker held entirely in memory.

    Market orders fill immediately at the last published price; limit orders
    fill when marketable and otherwise rest as accepted. Nothing survives the
    process. Options (all strings): symbols, non_tradable, starting_cash,
    market_open, prices.
    """

    name = "paper"
    capabilities = BackendCapabilities(idempotency_tokens=True, fractional_orders=True, streaming=True)

    def __init__(self, config: ClientConfig):
        self.config = config
        self.market_open = _parse_bool(config.option("market_open", "true"), "market_open")
        self.cash = _parse_decimal(config.option("starting_cash", DEFAULT_STARTING_CASH), "starting_cash")

        non_tradable = set(_split(config.option("non_tradable")))
        self._assets: Dict[str, Asset] = {}
        for symbol in _split(config.option("symbols", DEFAULT_SYMBOLS)) + sorted(non_tradable):
            self.add_asset(Asset(symbol=symbol, name=symbol, exchange="PAPER", asset_class=AssetClass.EQUITY,
                                 tradable=symbol not in non_tradable, fractionable=True, shortable=False))

        self._last_prices: Dict[str, Decimal] = _parse_prices(config.option("prices"))
        self._positions: Dict[str, Position] = {}
        self._orders: Dict[str, OrderAcknowledgment] = {}
        self._client_order_ids: Set[str] = set()
        self._streams: Set[PaperMarketStream] = set()
        self.streams_opened = 0

        self.logger = bind_broker_context(get_trading_logger_safe("paper_adapter"), self.name)

    @classmethod
    def validate_config(cls, config: ClientConfig) -> None:
        _parse_bool(config.option("market_open", "true"), "market_open")
        _parse_decimal(config.option("starting_cash", DEFAULT_STARTING_CASH), "starting_cash")
        _parse_prices(config.option("prices"))
        if not _split(config.option("symbols", DEFAULT_SYMBOLS)):
            raise ConfigurationError("Paper backend needs at least one symbol", config_field="options.symbols",
                                     config_value=config.option("symbols"))

    # Simulation controls

    def add_asset(self, asset: Asset) -> None:
        self._assets[asset.symbol] = asset

    def set_market_open(self, is_open: bool) -> None:
        self.market_open = is_open

    def set_price(self, symbol: str, price: Decimal) -> None:
        self._last_prices[symbol] = Decimal(price)

    def last_price(self, symbol: str) -> Optional[Decimal]:
        return self._last_prices.get(symbol)

    def publish(self, update: MarketUpdate) -> int:
        """Record the update's price and push it to every open stream subscribed to its symbol."""
        price = self._price_from(update)
        if price is not None:
            self._last_prices[update.symbol] = price
        return sum(1 for stream in tuple(self._streams) if stream.feed(update))

    def drop_streams(self) -> None:
        """End every open stream as if the server hung up."""
        for stream in tuple(self._streams):
            stream.end()

    # BrokerAdapter

    async def submit_order(self, order: Order) -> OrderAcknowledgment:
        asset = self._assets.get(order.symbol)
        if asset is None:
            raise UnknownSymbolError(f"asset not found for {order.symbol}", broker=self.name)
        if not asset.tradable:
            raise NotTradableError(f"{order.symbol} is not tradable", broker=self.name)
        if not self.market_open:
            raise MarketClosedError("market is closed", broker=self.name)
        if order.client_order_id is not None and order.client_order_id in self._client_order_ids:
            raise DuplicateOrderError("client_order_id must be unique", broker=self.name,
                                      api_response={"client_order_id": order.client_order_id})

        fill_price = self._fill_price(order)
        if order.side is OrderSide.BUY:
            reference = fill_price or order.limit_price or self._last_prices.get(order.symbol)
            if reference is not None and reference * order.quantity > self.cash:
                raise InsufficientFundsError("insufficient buying power", broker=self.name,
                                             details={"required": str(reference * order.quantity),
                                                      "available": str(self.cash)})
        else:
            held = self._positions.get(order.symbol)
            held_qty = held.quantity if held else Decimal("0")
            if order.quantity > held_qty and not asset.shortable:
                raise InsufficientFundsError("insufficient qty available for order", broker=self.name,
                                             details={"requested": str(order.quantity), "available": str(held_qty)})

        status = OrderStatus.ACCEPTED
        if fill_price is not None:
            self._apply_fill(order, fill_price)
            status = OrderStatus.FILLED

        ack = OrderAcknowledgment(
            order_id=f"paper-{generate_event_id()}",
            status=status,
            symbol=order.symbol,
            backend=self.name,
            client_order_id=order.client_order_id,
        )
        self._orders[ack.order_id] = ack
        if order.client_order_id is not None:
            self._client_order_ids.add(order.client_order_id)

        self.logger.info("PAPER ORDER (SIMULATED)", order_id=ack.order_id, symbol=order.symbol,
                         side=order.side.value, quantity=str(order.quantity), status=status.value,
                         fill_price=str(fill_price) if fill_price is not None else None)
        return ack

    async def lookup_asset(self, symbol: str) -> Asset:
        asset = self._assets.get(symbol)
        if asset is None:
            raise UnknownSymbolError(f"asset not found for {symbol}", broker=self.name)
        return asset

    async def cancel_order(self, order_id: str) -> None:
        ack = self._orders.get(order_id)
        if ack is None:
            raise NotFoundError(f"Order not found: {order_id}", resource="order", identifier=order_id)
        if ack.status in _TERMINAL:
            raise OrderRejectedError(f"order is not cancelable (status {ack.status.value})", broker=self.name)
        self._orders[order_id] = ack.model_copy(update={"status": OrderStatus.CANCELLED})

    async def get_account(self) -> Account:
        positions = [
            position.model_copy(update=self._marked(position)) for position in self._positions.values()
        ]
        market_value = sum(
            (p.quantity * (p.current_price if p.current_price is not None else p.average_price) for p in positions),
            Decimal("0"),
        )
        return Account(
            account_id="paper",
            cash=self.cash,
            equity=self.cash + market_value,
            buying_power=self.cash,
            positions=positions,
        )

    async def open_stream(self) -> PaperMarketStream:
        stream = PaperMarketStream(on_close=self._streams.discard)
        self._streams.add(stream)
        self.streams_opened += 1
        return stream

    async def aclose(self) -> None:
        self.drop_streams()

    # Internals

    def _fill_price(self, order: Order) -> Optional[Decimal]:
        last = self._last_prices.get(order.symbol)
        if last is None:
            return None
        if order.order_type is OrderType.MARKET:
            return last
        if order.order_type is OrderType.LIMIT:
            marketable = last <= order.limit_price if order.side is OrderSide.BUY else last >= order.limit_price
            return last if marketable else None
        # Stop orders rest until triggered; triggering is not simulated
        return None

    def _apply_fill(self, order: Order, price: Decimal) -> None:
        signed = order.quantity if order.side is OrderSide.BUY else -order.quantity
        self.cash -= signed * price

        current = self._positions.get(order.symbol)
        if current is None:
            self._positions[order.symbol] = Position(symbol=order.symbol, quantity=signed, average_price=price)
            return
        quantity = current.quantity + signed
        if quantity == 0:
            del self._positions[order.symbol]
            return
        average = current.average_price
        if order.side is OrderSide.BUY and current.quantity > 0:
            average = (current.average_price * current.quantity + price * order.quantity) / quantity
        self._positions[order.symbol] = current.model_copy(update={"quantity": quantity, "average_price": average})

    def _marked(self, position: Position) -> Dict[str, Decimal]:
        last = self._last_prices.get(position.symbol)
        if last is None:
            return {}
        return {"current_price": last, "unrealized_pnl": (last - position.average_price) * position.quantity}

    @staticmethod
    def _price_from(update: MarketUpdate) -> Optional[Decimal]:
        if isinstance(update, Trade):
            return update.price
        if isinstance(update, Bar):
            return update.close
        if isinstance(update, Quote) and update.bid_price and update.ask_price:
            return (update.bid_price + update.ask_price) / 2
        return None
