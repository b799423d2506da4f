"""
End-to-end flow through the public surface: configuration in, asset lookup,
order submission and a live update out. Runs against the paper backend and
against the Alpaca adapter with its HTTP and websocket layers faked.
"""

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from brokers.alpaca import stream as alpaca_stream
from brokers.alpaca.adapter import AlpacaAdapter
from core.config.settings import ClientConfig
from core.schemas.models import Order, OrderSide, OrderType
from core.streaming import StreamState
from core.trading import TradingClient, build_client
from tests.mocks.fake_backend import make_trade

pytestmark = pytest.mark.integration

UPDATE_TIMEOUT = 2.0


def abc_market_buy() -> Order:
    return Order(symbol="ABC", side=OrderSide.BUY, quantity=Decimal("10"), order_type=OrderType.MARKET)


@pytest.mark.asyncio
async def test_example_scenario_on_paper_backend():
    client = build_client({"backend": "paper", "options": {"symbols": "ABC", "prices": "ABC:25.10"}})

    async with client:
        asset = await client.get_asset("ABC")
        assert asset.symbol == "ABC"
        assert asset.tradable

        ack = await client.create_order(abc_market_buy())
        assert ack.order_id

        handle = await client.subscribe_to_data("ABC")
        client.adapter.publish(make_trade("ABC", "25.20"))
        update = await handle.get(timeout=UPDATE_TIMEOUT)
        assert update.symbol == "ABC"

        account = await client.get_account()
        assert account.positions[0].symbol == "ABC"

    assert client.subscriptions.state is StreamState.DISCONNECTED


class FakeAlpacaSocket:
    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        for frame in ('[{"T":"success","msg":"connected"}]', '[{"T":"success","msg":"authenticated"}]'):
            self.incoming.put_nowait(frame)

    async def recv(self):
        return await self.incoming.get()

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        pass


def alpaca_routes(request: httpx.Request) -> httpx.Response:
    if request.method == "GET" and request.url.path == "/v2/assets/ABC":
        return httpx.Response(200, json={"symbol": "ABC", "class": "us_equity", "exchange": "NYSE",
                                         "status": "active", "tradable": True, "fractionable": True})
    if request.method == "POST" and request.url.path == "/v2/orders":
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": "904837e3-3b76-47ec-b432-046db621571b", "status": "accepted",
                                         "symbol": body["symbol"], "submitted_at": "2024-05-01T14:30:00Z"})
    return httpx.Response(404, json={"message": "not found"})


@pytest.mark.asyncio
async def test_example_scenario_on_alpaca_adapter(monkeypatch):
    socket = FakeAlpacaSocket()

    async def fake_connect(url, **kwargs):
        return socket

    monkeypatch.setattr(alpaca_stream, "connect", fake_connect)
    config = ClientConfig(backend="alpaca", api_key="key-id", api_secret="secret-key")
    AlpacaAdapter.validate_config(config)
    adapter = AlpacaAdapter(config, transport=httpx.MockTransport(alpaca_routes))

    async with TradingClient(adapter, config) as client:
        asset = await client.get_asset("ABC")
        assert asset.symbol == "ABC" and asset.tradable

        ack = await client.create_order(abc_market_buy())
        assert ack.order_id == "904837e3-3b76-47ec-b432-046db621571b"

        handle = await client.subscribe_to_data("ABC")
        assert socket.sent[-1] == {"action": "subscribe", "trades": ["ABC"], "quotes": ["ABC"]}

        socket.incoming.put_nowait(json.dumps([
            {"T": "t", "S": "ABC", "i": 1, "x": "N", "p": 25.2, "s": 100, "t": "2024-05-01T14:30:01.5Z"},
        ]).encode("utf-8"))
        update = await handle.get(timeout=UPDATE_TIMEOUT)
        assert update.symbol == "ABC"
        assert update.price == Decimal("25.2")
