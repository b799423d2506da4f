"""
Backend-agnostic trading client.

The client owns exactly one adapter and one subscription engine, both bound
to the configuration it was built from. Contract validation always runs
before the adapter is touched; order submission is never retried here.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, Mapping, Optional, TypeVar, Union

from core.config.settings import ClientConfig
from core.logging import bind_broker_context, get_error_logger_safe, get_trading_logger_safe
from core.schemas.models import Account, Asset, Order, OrderAcknowledgment
from core.streaming import SubscriptionEngine, SubscriptionHandle
from core.trading.interfaces import BackendCapabilities, BrokerAdapter
from core.trading.validation import validate_order, validate_symbol
from core.utils.exceptions import (
    BackendError,
    NotFoundError,
    TransportError,
    UnknownSymbolError,
    ValidationError,
    create_error_context,
)

T = TypeVar("T")


class TradingClient:
    """Unified order, lookup and market-data surface over one broker adapter."""

    def __init__(self, adapter: BrokerAdapter, config: ClientConfig):
        self._adapter = adapter
        self._config = config
        self._engine = SubscriptionEngine(
            adapter,
            reconnection=config.reconnection,
            queue_maxsize=config.stream.queue_maxsize,
        )
        # Snapshots from get_asset, keyed by requested and broker symbol
        self._assets: Dict[str, Asset] = {}
        self._closed = False

        self.logger = bind_broker_context(get_trading_logger_safe("trading_client"), adapter.name)
        self.error_logger = bind_broker_context(get_error_logger_safe("trading_client_errors"), adapter.name)

    @classmethod
    def from_config(cls, config: Union[ClientConfig, Mapping[str, Any]]) -> "TradingClient":
        """Build a client for the backend named in `config`. Performs no network I/O."""
        from core.trading.factory import ClientFactory
        return ClientFactory.build(config)

    construct = from_config

    def __repr__(self) -> str:
        return f"<TradingClient backend={self.backend!r} paper={self._config.paper}>"

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def backend(self) -> str:
        return self._adapter.name

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._adapter.capabilities

    @property
    def adapter(self) -> BrokerAdapter:
        return self._adapter

    @property
    def subscriptions(self) -> SubscriptionEngine:
        return self._engine

    @property
    def closed(self) -> bool:
        return self._closed

    async def create_order(self, order: Order) -> OrderAcknowledgment:
        """
        Validate and submit an order.

        Raises:
            ValidationError: before any network call, if the order breaks a contract rule
            BackendError: if the broker rejected the order (see `kind`)
            TransportError: on connectivity failure; the order may or may not have reached the broker
        """
        self._ensure_open()
        if not isinstance(order, Order):
            raise ValidationError("Expected an Order value", field="order",
                                  value=order, expected_type="Order")

        symbol = self._resolve_symbol(order.symbol)
        validate_order(order, self.capabilities, self._assets.get(symbol))
        if order.symbol != symbol:
            order = order.model_copy(update={"symbol": symbol})

        self.logger.info("Submitting order", symbol=symbol, side=order.side.value,
                         quantity=str(order.quantity), order_type=order.order_type.value,
                         client_order_id=order.client_order_id)
        try:
            ack = await self._call(self._adapter.submit_order(order), "submit_order")
        except BackendError as e:
            self.error_logger.warning("Order rejected by broker",
                                      **create_error_context(e, "create_order", {"symbol": symbol}))
            raise

        self.logger.info("Order acknowledged", symbol=symbol, order_id=ack.order_id,
                         status=ack.status.value)
        return ack

    async def get_asset(self, symbol: str) -> Asset:
        """Look up instrument metadata. Unknown symbols raise NotFoundError."""
        self._ensure_open()
        symbol = validate_symbol(symbol)
        try:
            asset = await self._call(self._adapter.lookup_asset(symbol), "lookup_asset")
        except UnknownSymbolError as e:
            raise NotFoundError(f"Unknown symbol: {symbol}", resource="asset", identifier=symbol,
                                details={"broker": e.broker}) from e

        self._assets[symbol] = asset
        self._assets[asset.symbol] = asset
        self.logger.debug("Asset resolved", symbol=symbol, tradable=asset.tradable,
                          fractionable=asset.fractionable)
        return asset

    async def subscribe_to_data(self, symbol: str) -> SubscriptionHandle:
        """
        Register for live updates on `symbol`.

        All handles share one stream connection. Raises TransportError if the
        stream cannot be brought up within the reconnection budget.
        """
        self._ensure_open()
        symbol = self._resolve_symbol(symbol)
        if not self.capabilities.streaming:
            raise TransportError(f"Backend {self.backend!r} does not provide market data streaming",
                                 broker=self.backend, retryable=False)
        return await self._engine.subscribe(symbol)

    async def cancel_order(self, order_id: str) -> None:
        self._ensure_open()
        if not isinstance(order_id, str) or not order_id.strip():
            raise ValidationError("Order id must be a non-empty string", field="order_id", value=order_id)
        await self._call(self._adapter.cancel_order(order_id), "cancel_order")
        self.logger.info("Order cancelled", order_id=order_id)

    async def get_account(self) -> Account:
        self._ensure_open()
        return await self._call(self._adapter.get_account(), "get_account")

    async def close(self) -> None:
        """Release every subscription, the stream and the adapter's connections."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._engine.aclose()
        finally:
            await self._adapter.aclose()
        self.logger.info("Trading client closed")

    async def __aenter__(self) -> "TradingClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def cached_asset(self, symbol: str) -> Optional[Asset]:
        """Asset snapshot from an earlier get_asset call in this session, if any."""
        return self._assets.get(symbol)

    def _resolve_symbol(self, symbol: str) -> str:
        # A symbol resolved by get_asset keeps the broker's spelling for the rest of the session
        symbol = validate_symbol(symbol)
        asset = self._assets.get(symbol)
        return asset.symbol if asset is not None else symbol

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportError("Trading client is closed", broker=self.backend, retryable=False)

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        # Adapters map their own failures; anything raw from the socket layer is still a transport fault
        try:
            return await awaitable
        except asyncio.TimeoutError as e:
            raise TransportError(f"{operation} timed out", broker=self.backend) from e
        except OSError as e:
            raise TransportError(f"{operation} failed: {e}", broker=self.backend) from e
