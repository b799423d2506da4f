"""
Alpaca REST + market data adapter.

Orders, assets and account data go through the trading API
(paper-api.alpaca.markets or api.alpaca.markets); live data comes from the
market data websocket at stream.data.alpaca.markets.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from core.config.settings import ClientConfig
from core.logging import bind_broker_context, get_api_logger_safe, get_error_logger_safe
from core.schemas.models import (
    Account,
    Asset,
    AssetClass,
    AssetStatus,
    Order,
    OrderAcknowledgment,
    OrderStatus,
    Position,
)
from core.trading.factory import register_backend
from core.trading.interfaces import BackendCapabilities
from core.utils.exceptions import ConfigurationError, NotFoundError, TransportError, create_error_context

from .errors import map_error_response
from .formatter import AlpacaMessageFormatter
from .stream import STREAM_CHANNELS, AlpacaMarketStream

PAPER_BASE_URL = "https://paper-api.alpaca.markets"
LIVE_BASE_URL = "https://api.alpaca.markets"
DATA_STREAM_URL = "wss://stream.data.alpaca.markets/v2/{feed}"
DEFAULT_FEED = "iex"

# Alpaca order status -> acknowledgment status
ORDER_STATUS_MAP = {
    "new": OrderStatus.ACCEPTED,
    "accepted": OrderStatus.ACCEPTED,
    "accepted_for_bidding": OrderStatus.ACCEPTED,
    "done_for_day": OrderStatus.ACCEPTED,
    "calculated": OrderStatus.ACCEPTED,
    "pending_new": OrderStatus.PENDING,
    "pending_cancel": OrderStatus.PENDING,
    "pending_replace": OrderStatus.PENDING,
    "held": OrderStatus.PENDING,
    "suspended": OrderStatus.PENDING,
    "stopped": OrderStatus.PENDING,
    "replaced": OrderStatus.PENDING,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELLED,
    "expired": OrderStatus.EXPIRED,
    "rejected": OrderStatus.REJECTED,
}

ASSET_CLASS_MAP = {
    "us_equity": AssetClass.EQUITY,
    "crypto": AssetClass.CRYPTO,
    "us_option": AssetClass.OPTION,
}


@register_backend("alpaca")
class AlpacaAdapter:
    """Alpaca implementation of the BrokerAdapter protocol"""

    name = "alpaca"
    capabilities = BackendCapabilities(idempotency_tokens=True, fractional_orders=True, streaming=True)

    def __init__(self, config: ClientConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        # Explicit URLs are used exactly as configured
        self.base_url = config.base_url or (PAPER_BASE_URL if config.paper else LIVE_BASE_URL)
        self.feed = config.option("feed", DEFAULT_FEED)
        self.data_url = config.data_url or DATA_STREAM_URL.format(feed=self.feed)

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"accept": "application/json", **self._auth_headers()},
            timeout=config.request_timeout_seconds,
            transport=transport,
        )
        self.api_logger = bind_broker_context(get_api_logger_safe("alpaca_api"), self.name)
        self.error_logger = bind_broker_context(get_error_logger_safe("alpaca_api_errors"), self.name)

    @classmethod
    def validate_config(cls, config: ClientConfig) -> None:
        token = config.secret_value("token")
        if token is not None:
            if not token.strip():
                raise ConfigurationError("Alpaca token must not be empty", config_field="token",
                                         config_value="[REDACTED]")
        else:
            if not config.api_key or not config.api_key.strip():
                raise ConfigurationError("Alpaca requires api_key and api_secret, or a token",
                                         config_field="api_key", config_value=config.api_key)
            secret = config.secret_value("api_secret")
            if not secret or not secret.strip():
                raise ConfigurationError("Alpaca requires api_secret alongside api_key",
                                         config_field="api_secret", config_value="[REDACTED]")

        feed = config.option("feed", DEFAULT_FEED)
        if not feed or not feed.strip():
            raise ConfigurationError("Alpaca data feed must not be empty", config_field="options.feed",
                                     config_value=feed)
        unknown = [channel for channel in config.stream.channels if channel not in STREAM_CHANNELS]
        if unknown or not config.stream.channels:
            raise ConfigurationError(
                f"Unsupported Alpaca stream channels: {unknown or 'none configured'}",
                config_field="stream.channels",
                config_value=list(config.stream.channels),
            )

    def _auth_headers(self) -> Dict[str, str]:
        token = self.config.secret_value("token")
        if token is not None:
            return {"Authorization": f"Bearer {token}"}
        return {
            "APCA-API-KEY-ID": self.config.api_key or "",
            "APCA-API-SECRET-KEY": self.config.secret_value("api_secret") or "",
        }

    # REST operations

    async def submit_order(self, order: Order) -> OrderAcknowledgment:
        response = await self._request("POST", "/v2/orders", "submit_order", json=self.order_payload(order))
        if response.is_error:
            raise self._mapped(response, "submit_order", symbol=order.symbol)

        data = self._json(response, "submit_order")
        order_id = data.get("id")
        if not order_id:
            raise TransportError("Order response carried no order id", broker=self.name,
                                 details={"response": data})

        raw_status = data.get("status")
        status = ORDER_STATUS_MAP.get(raw_status, OrderStatus.PENDING)
        if raw_status not in ORDER_STATUS_MAP:
            self.api_logger.warning("Unrecognised order status", status=raw_status, order_id=order_id)

        submitted_at = data.get("submitted_at") or data.get("created_at")
        return OrderAcknowledgment(
            order_id=str(order_id),
            status=status,
            submitted_at=(AlpacaMessageFormatter.parse_timestamp(submitted_at)
                          if submitted_at else datetime.now(timezone.utc)),
            symbol=data.get("symbol") or order.symbol,
            backend=self.name,
            client_order_id=data.get("client_order_id") or order.client_order_id,
        )

    async def lookup_asset(self, symbol: str) -> Asset:
        response = await self._request("GET", f"/v2/assets/{quote(symbol, safe='')}", "lookup_asset")
        if response.status_code == 404:
            raise NotFoundError(f"Asset not found: {symbol}", resource="asset", identifier=symbol)
        if response.is_error:
            raise self._mapped(response, "lookup_asset", symbol=symbol)
        return self.parse_asset(self._json(response, "lookup_asset"))

    async def cancel_order(self, order_id: str) -> None:
        response = await self._request("DELETE", f"/v2/orders/{quote(order_id, safe='')}", "cancel_order")
        if response.status_code == 404:
            raise NotFoundError(f"Order not found: {order_id}", resource="order", identifier=order_id)
        if response.is_error:
            raise self._mapped(response, "cancel_order", order_id=order_id)

    async def get_account(self) -> Account:
        account_response, positions_response = await asyncio.gather(
            self._request("GET", "/v2/account", "get_account"),
            self._request("GET", "/v2/positions", "get_positions"),
        )
        for response, operation in ((account_response, "get_account"), (positions_response, "get_positions")):
            if response.is_error:
                raise self._mapped(response, operation)

        account = self._json(account_response, "get_account")
        positions = self._json(positions_response, "get_positions")
        return Account(
            account_id=str(account.get("id") or account.get("account_number")),
            currency=account.get("currency", "USD"),
            cash=Decimal(str(account.get("cash", "0"))),
            equity=Decimal(str(account.get("equity", "0"))),
            buying_power=Decimal(str(account.get("buying_power", "0"))),
            positions=[self.parse_position(item) for item in positions or []],
        )

    # Streaming

    async def open_stream(self) -> AlpacaMarketStream:
        token = self.config.secret_value("token")
        if token is not None:
            key, secret = "oauth", token
        else:
            key, secret = self.config.api_key or "", self.config.secret_value("api_secret") or ""
        stream = AlpacaMarketStream(
            self.data_url,
            key=key,
            secret=secret,
            channels=self.config.stream.channels,
            broker=self.name,
            open_timeout=self.config.request_timeout_seconds,
        )
        await stream.connect()
        return stream

    async def aclose(self) -> None:
        await self._client.aclose()

    # Wire format helpers

    @staticmethod
    def order_payload(order: Order) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbol": order.symbol,
            "qty": str(order.quantity),
            "side": order.side.value,
            "type": order.order_type.value,
            "time_in_force": order.time_in_force.value,
        }
        if order.limit_price is not None:
            payload["limit_price"] = str(order.limit_price)
        if order.stop_price is not None:
            payload["stop_price"] = str(order.stop_price)
        if order.client_order_id is not None:
            payload["client_order_id"] = order.client_order_id
        if order.extended_hours:
            payload["extended_hours"] = True
        return payload

    @staticmethod
    def parse_asset(data: Dict[str, Any]) -> Asset:
        status = AssetStatus.ACTIVE if data.get("status", "active") == "active" else AssetStatus.INACTIVE
        return Asset(
            symbol=data["symbol"],
            name=data.get("name"),
            exchange=data.get("exchange"),
            asset_class=ASSET_CLASS_MAP.get(data.get("class"), AssetClass.OTHER),
            status=status,
            tradable=bool(data.get("tradable", False)),
            fractionable=bool(data.get("fractionable", False)),
            shortable=bool(data.get("shortable", False)),
            marginable=bool(data.get("marginable", False)),
        )

    @staticmethod
    def parse_position(data: Dict[str, Any]) -> Position:
        current = data.get("current_price")
        return Position(
            symbol=data["symbol"],
            quantity=Decimal(str(data["qty"])),
            average_price=Decimal(str(data.get("avg_entry_price", "0"))),
            current_price=Decimal(str(current)) if current is not None else None,
            unrealized_pnl=Decimal(str(data.get("unrealized_pl", "0"))),
        )

    async def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"{operation} timed out", broker=self.name,
                                 details={"path": path}) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{operation} failed: {e}", broker=self.name,
                                 details={"path": path}) from e
        self.api_logger.debug("Alpaca response", method=method, path=path,
                              status_code=response.status_code)
        return response

    def _json(self, response: httpx.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Unparseable {operation} response", broker=self.name,
                                 details={"status_code": response.status_code}) from e

    def _mapped(self, response: httpx.Response, operation: str, **context: Any) -> Exception:
        error = map_error_response(response, self.name, operation)
        self.error_logger.warning("Alpaca request failed",
                                  **create_error_context(error, operation,
                                                         {"status_code": response.status_code, **context}))
        return error
