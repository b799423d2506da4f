# Formatting of Alpaca market data stream messages into MarketUpdate models
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.schemas.events import Bar, BookLevel, MarketUpdate, MarketUpdateKind, OrderBook, Quote, Trade

_BAR_KINDS = {
    "b": MarketUpdateKind.BAR,
    "u": MarketUpdateKind.UPDATED_BAR,
    "d": MarketUpdateKind.DAILY_BAR,
}

# RFC 3339 with up to nanosecond precision, e.g. 2021-02-22T15:51:44.208123456Z
_FRACTION = re.compile(r"\.(\d+)")

CONTROL_MESSAGE_TYPES = frozenset({"success", "subscription", "error"})


class AlpacaMessageFormatter:
    """Converts decoded stream messages (one JSON object each) into update models"""

    def format_message(self, raw: Dict[str, Any]) -> Optional[MarketUpdate]:
        """
        Return the update for a data message, or None for message types
        that carry no market data.

        Raises KeyError or ValueError for a data message missing required fields.
        """
        message_type = raw.get("T")
        if message_type == "t":
            return self._format_trade(raw)
        if message_type == "q":
            return self._format_quote(raw)
        if message_type in _BAR_KINDS:
            return self._format_bar(raw, _BAR_KINDS[message_type])
        if message_type == "o":
            return self._format_order_book(raw)
        return None

    def _format_trade(self, raw: Dict[str, Any]) -> Trade:
        return Trade(
            symbol=raw["S"],
            price=self._decimal(raw["p"]),
            size=self._decimal(raw.get("s", 0)),
            timestamp=self.parse_timestamp(raw["t"]),
            exchange=raw.get("x"),
            trade_id=str(raw["i"]) if raw.get("i") is not None else None,
        )

    def _format_quote(self, raw: Dict[str, Any]) -> Quote:
        return Quote(
            symbol=raw["S"],
            bid_price=self._decimal(raw.get("bp", 0)),
            bid_size=self._decimal(raw.get("bs", 0)),
            ask_price=self._decimal(raw.get("ap", 0)),
            ask_size=self._decimal(raw.get("as", 0)),
            timestamp=self.parse_timestamp(raw["t"]),
        )

    def _format_bar(self, raw: Dict[str, Any], kind: MarketUpdateKind) -> Bar:
        return Bar(
            kind=kind,
            symbol=raw["S"],
            open=self._decimal(raw["o"]),
            high=self._decimal(raw["h"]),
            low=self._decimal(raw["l"]),
            close=self._decimal(raw["c"]),
            volume=self._decimal(raw.get("v", 0)),
            timestamp=self.parse_timestamp(raw["t"]),
        )

    def _format_order_book(self, raw: Dict[str, Any]) -> OrderBook:
        return OrderBook(
            symbol=raw["S"],
            bids=self._format_levels(raw.get("b", raw.get("bids"))),
            asks=self._format_levels(raw.get("a", raw.get("asks"))),
            timestamp=self.parse_timestamp(raw["t"]),
        )

    def _format_levels(self, levels: Optional[List[Any]]) -> List[BookLevel]:
        """Levels arrive either as {"p": .., "s": ..} objects or as [price, size] pairs"""
        formatted = []
        for level in levels or []:
            if isinstance(level, dict):
                price, size = level["p"], level["s"]
            else:
                price, size = level[0], level[1]
            formatted.append(BookLevel(price=self._decimal(price), size=self._decimal(size)))
        return formatted

    @staticmethod
    def _decimal(value: Any) -> Decimal:
        return Decimal(str(value))

    @staticmethod
    def parse_timestamp(value: str) -> datetime:
        """Parse an RFC 3339 timestamp into an aware UTC datetime (sub-microsecond digits dropped)"""
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
