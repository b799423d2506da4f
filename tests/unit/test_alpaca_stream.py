"""
Alpaca market data stream tests. The websocket is replaced by an in-memory
fake so the handshake, subscription diffs and frame decoding can be checked.
"""

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from brokers.alpaca import stream as stream_module
from brokers.alpaca.stream import AlpacaMarketStream
from core.schemas.events import MarketUpdateKind
from core.utils.exceptions import TransportError

CONNECTED = '[{"T":"success","msg":"connected"}]'
AUTHENTICATED = '[{"T":"success","msg":"authenticated"}]'


class FakeWebSocket:
    def __init__(self, frames=()):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False
        for frame in frames:
            self.incoming.put_nowait(frame)

    def feed(self, frame):
        self.incoming.put_nowait(frame)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_ws(monkeypatch):
    ws = FakeWebSocket([CONNECTED, AUTHENTICATED])
    calls = []

    async def fake_connect(url, **kwargs):
        calls.append(url)
        return ws

    monkeypatch.setattr(stream_module, "connect", fake_connect)
    ws.connect_calls = calls
    return ws


def make_stream(channels=("trades", "quotes")):
    return AlpacaMarketStream("wss://stream.data.alpaca.markets/v2/iex", key="key-id", secret="secret-key",
                              channels=channels)


class TestHandshake:

    @pytest.mark.asyncio
    async def test_authenticates_after_greeting(self, fake_ws):
        stream = make_stream()

        await stream.connect()

        assert fake_ws.connect_calls == ["wss://stream.data.alpaca.markets/v2/iex"]
        assert fake_ws.sent == [{"action": "auth", "key": "key-id", "secret": "secret-key"}]

    @pytest.mark.asyncio
    async def test_auth_failure_is_not_retryable_and_closes(self, monkeypatch):
        ws = FakeWebSocket([CONNECTED, '[{"T":"error","code":402,"msg":"auth failed"}]'])

        async def fake_connect(url, **kwargs):
            return ws

        monkeypatch.setattr(stream_module, "connect", fake_connect)

        with pytest.raises(TransportError) as exc_info:
            await make_stream().connect()

        assert not exc_info.value.retryable
        assert exc_info.value.details["code"] == 402
        assert ws.closed

    @pytest.mark.asyncio
    async def test_connection_limit_is_retryable(self, monkeypatch):
        ws = FakeWebSocket([CONNECTED, '[{"T":"error","code":406,"msg":"connection limit exceeded"}]'])

        async def fake_connect(url, **kwargs):
            return ws

        monkeypatch.setattr(stream_module, "connect", fake_connect)

        with pytest.raises(TransportError) as exc_info:
            await make_stream().connect()

        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connect_error_becomes_transport_error(self, monkeypatch):
        async def refuse(url, **kwargs):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(stream_module, "connect", refuse)

        with pytest.raises(TransportError) as exc_info:
            await make_stream().connect()

        assert exc_info.value.retryable


class TestSubscriptions:

    @pytest.mark.asyncio
    async def test_subscription_diffs_per_channel(self, fake_ws):
        stream = make_stream()
        await stream.connect()

        await stream.send_subscription({"AAPL", "MSFT"})
        await stream.send_subscription({"MSFT", "TSLA"})
        await stream.send_subscription({"MSFT", "TSLA"})

        assert fake_ws.sent[1:] == [
            {"action": "subscribe", "trades": ["AAPL", "MSFT"], "quotes": ["AAPL", "MSFT"]},
            {"action": "unsubscribe", "trades": ["AAPL"], "quotes": ["AAPL"]},
            {"action": "subscribe", "trades": ["TSLA"], "quotes": ["TSLA"]},
        ]
        assert stream.subscribed == frozenset({"MSFT", "TSLA"})

    @pytest.mark.asyncio
    async def test_send_after_close_fails(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        await stream.close()

        with pytest.raises(TransportError):
            await stream.send_subscription({"AAPL"})


class TestMessages:

    @pytest.mark.asyncio
    async def test_text_and_binary_frames_decoded_in_order(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        fake_ws.feed('[{"T":"subscription","trades":["AAPL"],"quotes":["AAPL"]}]')
        fake_ws.feed(json.dumps([
            {"T": "t", "S": "AAPL", "i": 96921, "x": "D", "p": 126.55, "s": 1, "t": "2021-02-22T15:51:44.208Z"},
            {"T": "q", "S": "AAPL", "bp": 126.5, "bs": 2, "ap": 126.6, "as": 3, "t": "2021-02-22T15:51:44.3Z"},
        ]).encode("utf-8"))

        trade = await stream.next_message()
        quote = await stream.next_message()

        assert trade.kind is MarketUpdateKind.TRADE
        assert str(trade.price) == "126.55"
        assert quote.kind is MarketUpdateKind.QUOTE
        assert str(quote.ask_size) == "3"

    @pytest.mark.asyncio
    async def test_error_and_malformed_messages_skipped(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        fake_ws.feed('[{"T":"error","code":405,"msg":"symbol limit exceeded"}]')
        fake_ws.feed('[{"T":"t","S":"AAPL"}]')
        fake_ws.feed('[{"T":"b","S":"AAPL","o":1,"h":2,"l":0.5,"c":1.5,"v":100,"t":"2021-02-22T19:15:00Z"}]')

        bar = await stream.next_message()

        assert bar.kind is MarketUpdateKind.BAR
        assert bar.symbol == "AAPL"

    @pytest.mark.asyncio
    async def test_clean_close_ends_stream(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        fake_ws.feed(ConnectionClosedOK(Close(1000, "bye"), Close(1000, "bye"), rcvd_then_sent=True))

        assert await stream.next_message() is None

    @pytest.mark.asyncio
    async def test_abnormal_close_is_transport_error(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        fake_ws.feed(ConnectionClosedError(Close(1011, "internal error"), None))

        with pytest.raises(TransportError):
            await stream.next_message()

    @pytest.mark.asyncio
    async def test_garbage_frame_is_transport_error(self, fake_ws):
        stream = make_stream()
        await stream.connect()
        fake_ws.feed(b"\xff\xfe not json")

        with pytest.raises(TransportError):
            await stream.next_message()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_ws):
        stream = make_stream()
        await stream.connect()

        await stream.close()
        await stream.close()

        assert fake_ws.closed
        assert await stream.next_message() is None
