"""
Alpaca market data websocket.

Protocol: the server greets with [{"T":"success","msg":"connected"}], the
client sends an auth action, then subscribe/unsubscribe actions listing
symbols per channel. Every server frame is a JSON array of messages; paper
and live endpoints differ in whether frames are text or binary.
"""

import asyncio
import json
from collections import deque
from typing import AbstractSet, Any, Deque, Dict, FrozenSet, List, Optional, Sequence

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from core.logging import bind_broker_context, get_error_logger_safe, get_market_data_logger_safe
from core.schemas.events import MarketUpdate
from core.utils.exceptions import TransportError

from .formatter import CONTROL_MESSAGE_TYPES, AlpacaMessageFormatter

# Channel names accepted in StreamSettings.channels
STREAM_CHANNELS = frozenset({"trades", "quotes", "bars", "updatedBars", "dailyBars", "orderbooks"})

# Stream error codes that reconnecting cannot fix
# 402 auth failed, 409 insufficient subscription
FATAL_ERROR_CODES = frozenset({402, 409})


class AlpacaMarketStream:
    """One authenticated data stream connection. Implements MarketStream."""

    def __init__(self, url: str, key: str, secret: str, channels: Sequence[str],
                 broker: str = "alpaca", open_timeout: float = 10.0):
        self.url = url
        self.channels = tuple(channels)
        self.broker = broker
        self._key = key
        self._secret = secret
        self._open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._subscribed: FrozenSet[str] = frozenset()
        self._pending: Deque[MarketUpdate] = deque()
        self.formatter = AlpacaMessageFormatter()
        self.logger = bind_broker_context(get_market_data_logger_safe("alpaca_stream"), broker)
        self.error_logger = bind_broker_context(get_error_logger_safe("alpaca_stream_errors"), broker)

    @property
    def subscribed(self) -> FrozenSet[str]:
        return self._subscribed

    async def connect(self) -> None:
        """Open the socket and authenticate. Closes the socket on any failure."""
        try:
            self._ws = await connect(self.url, open_timeout=self._open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Could not connect to {self.url}: {e}", broker=self.broker) from e

        try:
            await self._expect_success("connected")
            await self._send({"action": "auth", "key": self._key, "secret": self._secret})
            await self._expect_success("authenticated")
        except BaseException:
            await self.close()
            raise
        self.logger.info("Market data stream authenticated", url=self.url)

    async def send_subscription(self, symbols: AbstractSet[str]) -> None:
        """Bring the server-side subscription in line with `symbols`."""
        target = frozenset(symbols)
        removed = self._subscribed - target
        added = target - self._subscribed
        if removed:
            await self._send(self._action("unsubscribe", removed))
        if added:
            await self._send(self._action("subscribe", added))
        self._subscribed = target
        if removed or added:
            self.logger.info("Subscription updated", added=sorted(added), removed=sorted(removed),
                             total=len(target))

    async def next_message(self) -> Optional[MarketUpdate]:
        while not self._pending:
            if self._ws is None:
                return None
            messages = await self._receive()
            if messages is None:
                return None
            for message in messages:
                update = self._handle_message(message)
                if update is not None:
                    self._pending.append(update)
        return self._pending.popleft()

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        self._pending.clear()
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Error closing market data stream: {e}", broker=self.broker) from e

    def _action(self, action: str, symbols: AbstractSet[str]) -> Dict[str, Any]:
        ordered = sorted(symbols)
        return {"action": action, **{channel: ordered for channel in self.channels}}

    async def _send(self, payload: Dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportError("Market data stream is not connected", broker=self.broker)
        try:
            await self._ws.send(json.dumps(payload))
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Failed to send {payload.get('action')} message: {e}",
                                 broker=self.broker) from e

    async def _receive(self) -> Optional[List[Dict[str, Any]]]:
        """Read one frame. None means the server closed the connection normally."""
        ws = self._ws
        if ws is None:
            return None
        try:
            frame = await ws.recv()
        except ConnectionClosedOK:
            return None
        except (ConnectionClosed, OSError, WebSocketException) as e:
            raise TransportError(f"Market data stream receive failed: {e}", broker=self.broker) from e
        return self._decode(frame)

    def _decode(self, frame: Any) -> List[Dict[str, Any]]:
        try:
            text = frame.decode("utf-8") if isinstance(frame, (bytes, bytearray)) else frame
            data = json.loads(text)
        except (UnicodeDecodeError, ValueError) as e:
            raise TransportError(f"Malformed market data frame: {e}", broker=self.broker) from e
        if isinstance(data, dict):
            return [data]
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        raise TransportError(f"Unexpected market data frame: {type(data).__name__}", broker=self.broker)

    async def _expect_success(self, expected: str) -> None:
        messages = await self._receive()
        if messages is None:
            raise TransportError(f"Stream closed while waiting for '{expected}'", broker=self.broker)
        for message in messages:
            if message.get("T") == "error":
                raise self._stream_error(message)
            if message.get("T") == "success" and message.get("msg") == expected:
                return
        raise TransportError(f"Unexpected handshake reply, wanted '{expected}'", broker=self.broker,
                             details={"messages": messages})

    def _stream_error(self, message: Dict[str, Any]) -> TransportError:
        code = message.get("code")
        return TransportError(
            f"Alpaca stream error {code}: {message.get('msg')}",
            broker=self.broker,
            retryable=code not in FATAL_ERROR_CODES,
            details={"code": code},
        )

    def _handle_message(self, message: Dict[str, Any]) -> Optional[MarketUpdate]:
        message_type = message.get("T")
        if message_type == "error":
            self.error_logger.warning("Alpaca stream reported an error", code=message.get("code"),
                                      msg=message.get("msg"))
            return None
        if message_type in CONTROL_MESSAGE_TYPES:
            self.logger.debug("Control message", type=message_type, message=message)
            return None
        try:
            update = self.formatter.format_message(message)
        except (KeyError, IndexError, TypeError, ValueError, ArithmeticError) as e:
            self.error_logger.warning("Discarding malformed market data message",
                                      type=message_type, error=str(e))
            return None
        if update is None:
            self.logger.debug("Ignoring unsupported message type", type=message_type)
        return update
