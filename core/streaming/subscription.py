"""Caller-facing subscription handles."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from core.schemas.events import MarketUpdate
from core.utils.exceptions import TransportError
from core.utils.ids import generate_event_id

if TYPE_CHECKING:
    from core.streaming.engine import SubscriptionEngine

_CLOSED = object()


class SubscriptionHandle:
    """
    One caller's interest in one symbol's live data.

    Updates are queued in arrival order. After the handle is released the
    updates that were already queued can still be read; after a terminal
    stream failure every read raises the TransportError that ended the stream.
    """

    def __init__(self, symbol: str, engine: "SubscriptionEngine", maxsize: int = 0):
        self.id = generate_event_id()
        self.symbol = symbol
        self.created_at = datetime.now(timezone.utc)
        self.dropped = 0
        self.delivered = 0
        self._engine = engine
        self._maxsize = maxsize
        # Unbounded so the close sentinel always fits; maxsize is enforced in _deliver
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: Optional[TransportError] = None

    def __repr__(self) -> str:
        state = "active" if self.active else "closed"
        return f"<SubscriptionHandle {self.symbol} {self.id} {state}>"

    @property
    def active(self) -> bool:
        return not self._closed

    @property
    def error(self) -> Optional[TransportError]:
        return self._error

    def pending(self) -> int:
        """Number of updates queued and not yet read."""
        return self._queue.qsize() - (1 if self._closed else 0)

    async def get(self, timeout: Optional[float] = None) -> Optional[MarketUpdate]:
        """
        Wait for the next update.

        Returns None once the handle is released and drained. Raises the
        terminal TransportError if the stream failed, and asyncio.TimeoutError
        if `timeout` elapses first.
        """
        if self._closed and self._queue.empty():
            return self._finished()
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # Leave the sentinel for any other reader waiting on this handle
            self._queue.put_nowait(_CLOSED)
            return self._finished()
        return item

    async def unsubscribe(self) -> None:
        """Release this handle's interest. Safe to call more than once."""
        await self._engine.unsubscribe(self)

    def __aiter__(self) -> "SubscriptionHandle":
        return self

    async def __anext__(self) -> MarketUpdate:
        update = await self.get()
        if update is None:
            raise StopAsyncIteration
        return update

    async def __aenter__(self) -> "SubscriptionHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()

    # Engine side. These run on the event loop without awaiting, so a
    # delivery is either fully enqueued or not delivered at all.

    def _deliver(self, update: MarketUpdate) -> bool:
        if self._closed:
            return False
        if self._maxsize and self._queue.qsize() >= self._maxsize:
            self.dropped += 1
            return False
        self._queue.put_nowait(update)
        self.delivered += 1
        return True

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def _fail(self, error: TransportError) -> None:
        if self._closed:
            return
        self._error = error
        self._close()

    def _finished(self) -> None:
        if self._error is not None:
            raise self._error
        return None
