# In-memory market data stream fed by PaperAdapter.publish()
import asyncio
from typing import AbstractSet, Callable, FrozenSet, Optional

from core.schemas.events import MarketUpdate
from core.utils.exceptions import TransportError

_END = object()


class PaperMarketStream:
    """Implements MarketStream over an asyncio.Queue; only subscribed symbols are delivered"""

    def __init__(self, on_close: Optional[Callable[["PaperMarketStream"], None]] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscribed: FrozenSet[str] = frozenset()
        self._closed = False
        self._on_close = on_close

    @property
    def subscribed(self) -> FrozenSet[str]:
        return self._subscribed

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_subscription(self, symbols: AbstractSet[str]) -> None:
        if self._closed:
            raise TransportError("Paper stream is closed", broker="paper")
        self._subscribed = frozenset(symbols)

    def feed(self, update: MarketUpdate) -> bool:
        if self._closed or update.symbol not in self._subscribed:
            return False
        self._queue.put_nowait(update)
        return True

    async def next_message(self) -> Optional[MarketUpdate]:
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _END:
            return None
        return item

    async def close(self) -> None:
        self.end()

    def end(self) -> None:
        """Terminate the stream; readers see end-of-stream after draining."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)
        if self._on_close is not None:
            self._on_close(self)
