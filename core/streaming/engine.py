"""
Subscription engine: one market-data stream per client, many handles on top.

All mutation of the symbol registry, the connection state and outbound
subscription messages happens while holding a single asyncio.Lock. Reading
from the stream is done by one runner task per connection cycle, which is
also the only place state transitions driven by stream I/O originate.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Set

from pydantic import BaseModel

from core.config.settings import ReconnectionSettings
from core.logging import bind_broker_context, get_error_logger_safe, get_market_data_logger_safe
from core.schemas.events import MarketUpdate
from core.trading.interfaces import BrokerAdapter, MarketStream
from core.utils.exceptions import TransportError, create_error_context

from .backoff import BackoffPolicy
from .subscription import SubscriptionHandle


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"


class ConnectionStats(BaseModel):
    """Stream connection statistics"""
    connection_attempts: int = 0
    successful_connections: int = 0
    disconnections: int = 0
    reconnection_attempts: int = 0
    updates_received: int = 0
    updates_delivered: int = 0
    updates_unrouted: int = 0
    last_connection_time: Optional[datetime] = None
    last_disconnection_time: Optional[datetime] = None
    current_status: StreamState = StreamState.DISCONNECTED


def _retrieve_exception(future: asyncio.Future) -> None:
    # Terminal errors are delivered through the handles; nobody may await this future
    if not future.cancelled():
        future.exception()


class SubscriptionEngine:
    """
    Multiplexes symbol subscriptions over one backend stream.

    Lifecycle: Disconnected -> Connecting (first interest) -> Live ->
    Degraded (I/O error) -> Reconnecting (backoff) -> Live, or Disconnected
    once the retry budget is exhausted or the last symbol is released.
    """

    def __init__(self, adapter: BrokerAdapter, reconnection: Optional[ReconnectionSettings] = None,
                 queue_maxsize: int = 0):
        reconnection = reconnection or ReconnectionSettings()
        self._adapter = adapter
        self._policy = BackoffPolicy.from_settings(reconnection)
        self._open_timeout = reconnection.timeout_seconds
        self._queue_maxsize = queue_maxsize

        self._lock = asyncio.Lock()
        self._handles: Dict[str, Set[SubscriptionHandle]] = {}
        self._state = StreamState.DISCONNECTED
        self._stream: Optional[MarketStream] = None
        self._runner: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Future] = None
        self._failures = 0

        self.stats = ConnectionStats()
        self.logger = bind_broker_context(get_market_data_logger_safe("subscription_engine"), adapter.name)
        self.error_logger = bind_broker_context(get_error_logger_safe("subscription_engine_errors"), adapter.name)

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def symbols(self) -> FrozenSet[str]:
        return frozenset(self._handles)

    @property
    def handle_count(self) -> int:
        return sum(len(handles) for handles in self._handles.values())

    # Caller side

    async def subscribe(self, symbol: str) -> SubscriptionHandle:
        """
        Register interest in `symbol` and return a new handle.

        Waits until the stream has been Live at least once in the current
        connection cycle. Raises TransportError if the cycle ends without the
        stream ever coming up.
        """
        async with self._lock:
            handle = SubscriptionHandle(symbol, self, self._queue_maxsize)
            new_symbol = symbol not in self._handles
            self._handles.setdefault(symbol, set()).add(handle)
            if self._state is StreamState.DISCONNECTED:
                self._start_cycle()
            elif self._state is StreamState.LIVE and new_symbol:
                await self._resync_locked()
            ready = self._ready

        self.logger.info("Subscription registered", symbol=symbol, handle_id=handle.id,
                         state=self._state.value, new_symbol=new_symbol)
        try:
            await asyncio.shield(ready)
        except asyncio.CancelledError:
            await self.unsubscribe(handle)
            raise
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        async with self._lock:
            handles = self._handles.get(handle.symbol)
            handle._close()
            if not handles or handle not in handles:
                return
            handles.discard(handle)
            self.logger.info("Subscription released", symbol=handle.symbol, handle_id=handle.id)
            if handles:
                return
            del self._handles[handle.symbol]
            if not self._handles:
                await self._teardown_locked("no active subscriptions")
            elif self._state is StreamState.LIVE:
                await self._resync_locked()

    async def aclose(self) -> None:
        """Release every handle and close the stream."""
        async with self._lock:
            for handles in self._handles.values():
                for handle in handles:
                    handle._close()
            self._handles.clear()
            await self._teardown_locked("engine closed")

    async def get_metrics(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "symbols": sorted(self._handles),
            "handles": self.handle_count,
            "consecutive_failures": self._failures,
            **self.stats.model_dump(mode="json"),
        }

    # Connection cycle (runner task)

    def _start_cycle(self) -> None:
        self._ready = asyncio.get_running_loop().create_future()
        self._ready.add_done_callback(_retrieve_exception)
        self._failures = 0
        self._set_state(StreamState.CONNECTING)
        self._runner = asyncio.create_task(self._run(), name=f"subscription-engine-{self._adapter.name}")

    async def _run(self) -> None:
        try:
            while True:
                stream = await self._connect()
                if stream is None:
                    return
                error = await self._pump(stream)
                if not await self._handle_failure(error):
                    return
        except Exception as e:
            await self._crash(e)

    async def _crash(self, cause: Exception) -> None:
        """Fail the cycle on an error the adapter did not map to TransportError."""
        error = TransportError(f"Market data stream crashed: {cause!r}", broker=self._adapter.name,
                               retryable=False)
        error.__cause__ = cause
        self.error_logger.error("Unexpected error in stream runner", error=repr(cause), exc_info=cause)
        async with self._lock:
            if self._runner is not asyncio.current_task():
                return
            stream, self._stream = self._stream, None
            if stream is not None:
                self.stats.disconnections += 1
                self.stats.last_disconnection_time = datetime.now(timezone.utc)
                await self._close_stream(stream)
            self._failures += 1
            self._fail_all_locked(error)

    async def _connect(self) -> Optional[MarketStream]:
        """Open the stream and go Live, retrying with backoff. None means give up."""
        while True:
            self.stats.connection_attempts += 1
            try:
                stream = await asyncio.wait_for(self._adapter.open_stream(), self._open_timeout)
            except asyncio.TimeoutError:
                error = TransportError("Timed out opening market data stream", broker=self._adapter.name)
            except TransportError as e:
                error = e
            else:
                error = await self._go_live(stream)
                if error is None:
                    return stream
            if not await self._handle_failure(error):
                return None

    async def _go_live(self, stream: MarketStream) -> Optional[TransportError]:
        live = False
        try:
            async with self._lock:
                symbols = self.symbols
                await stream.send_subscription(symbols)
                self._stream = stream
                self._failures = 0
                self.stats.successful_connections += 1
                self.stats.last_connection_time = datetime.now(timezone.utc)
                self._set_state(StreamState.LIVE, symbols=len(symbols))
                self._resolve_ready()
                live = True
            return None
        except TransportError as e:
            return e
        finally:
            if not live:
                await self._close_stream(stream)

    async def _pump(self, stream: MarketStream) -> TransportError:
        while True:
            try:
                update = await stream.next_message()
            except TransportError as e:
                return e
            if update is None:
                return TransportError("Market data stream closed by remote", broker=self._adapter.name)
            self._dispatch(update)

    def _dispatch(self, update: MarketUpdate) -> None:
        self.stats.updates_received += 1
        handles = self._handles.get(update.symbol)
        if not handles:
            self.stats.updates_unrouted += 1
            return
        for handle in tuple(handles):
            if handle._deliver(update):
                self.stats.updates_delivered += 1

    async def _handle_failure(self, error: TransportError) -> bool:
        """Record a failed I/O event. Returns True after sleeping if a reconnect should follow."""
        async with self._lock:
            stream, self._stream = self._stream, None
            if stream is not None:
                self.stats.disconnections += 1
                self.stats.last_disconnection_time = datetime.now(timezone.utc)
            self._failures += 1
            self._set_state(StreamState.DEGRADED, error=str(error), failures=self._failures)
            if stream is not None:
                await self._close_stream(stream)

            if not self._handles:
                self._runner = None
                self._set_state(StreamState.DISCONNECTED)
                return False
            if not error.retryable or self._policy.exhausted(self._failures):
                self._fail_all_locked(error)
                return False

            delay = self._policy.delay(self._failures)
            self.stats.reconnection_attempts += 1
            self._set_state(StreamState.RECONNECTING, attempt=self._failures,
                            max_attempts=self._policy.max_attempts, delay=round(delay, 3))
        await asyncio.sleep(delay)
        return True

    def _fail_all_locked(self, cause: TransportError) -> None:
        terminal = TransportError(
            f"Market data stream unavailable after {self._failures} consecutive failure(s): {cause.message}",
            broker=self._adapter.name,
            retryable=cause.retryable,
            details={"failures": self._failures, "symbols": sorted(self._handles)},
        )
        terminal.__cause__ = cause
        self.error_logger.error("Market data stream failed permanently",
                                **create_error_context(terminal, "stream_reconnect"))
        for handles in self._handles.values():
            for handle in handles:
                handle._fail(terminal)
        self._handles.clear()
        self._runner = None
        self._set_state(StreamState.DISCONNECTED)
        self._resolve_ready(terminal)

    # Helpers (lock held by caller)

    async def _resync_locked(self) -> None:
        stream = self._stream
        if stream is None:
            return
        try:
            await stream.send_subscription(self.symbols)
        except TransportError as e:
            # The runner observes the closed stream and reconnects; the full set goes out again on Live
            self.logger.warning("Subscription resync failed, forcing reconnect", error=str(e))
            await self._close_stream(stream)

    async def _teardown_locked(self, reason: str) -> None:
        runner, self._runner = self._runner, None
        if runner is not None and runner is not asyncio.current_task():
            runner.cancel()
            await asyncio.wait([runner])
        stream, self._stream = self._stream, None
        if stream is not None:
            self.stats.disconnections += 1
            self.stats.last_disconnection_time = datetime.now(timezone.utc)
            await self._close_stream(stream)
        self._resolve_ready(TransportError(f"Subscription cycle ended: {reason}",
                                           broker=self._adapter.name, retryable=False))
        self._set_state(StreamState.DISCONNECTED, reason=reason)

    async def _close_stream(self, stream: MarketStream) -> None:
        try:
            await stream.close()
        except TransportError as e:
            self.logger.warning("Error while closing market data stream", error=str(e))

    def _resolve_ready(self, error: Optional[TransportError] = None) -> None:
        ready = self._ready
        if ready is None or ready.done():
            return
        if error is None:
            ready.set_result(None)
        else:
            ready.set_exception(error)

    def _set_state(self, state: StreamState, **context: Any) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        self.stats.current_status = state
        log = self.logger.warning if state in (StreamState.DEGRADED, StreamState.RECONNECTING) else self.logger.info
        log("Stream state changed", previous=previous.value, state=state.value, **context)
