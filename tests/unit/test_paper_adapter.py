"""
Paper backend tests: simulated fills, rejections and the in-memory stream.
"""

from decimal import Decimal

import pytest

from brokers.paper import PaperAdapter
from core.config.settings import ClientConfig, ReconnectionSettings
from core.schemas.models import Order, OrderSide, OrderStatus, OrderType
from core.trading.client import TradingClient
from core.utils.exceptions import (
    DuplicateOrderError,
    InsufficientFundsError,
    MarketClosedError,
    NotFoundError,
    NotTradableError,
    OrderRejectedError,
    UnknownSymbolError,
)
from core.streaming import StreamState
from tests.mocks.fake_backend import make_trade, wait_until


def paper_config(reconnection: ReconnectionSettings = None, **options) -> ClientConfig:
    defaults = {"symbols": "ABC,XYZ", "prices": "ABC:10,XYZ:50", "starting_cash": "1000"}
    defaults.update(options)
    return ClientConfig(backend="paper", options=defaults, reconnection=reconnection or ReconnectionSettings())


def buy(symbol="ABC", quantity="10", **overrides) -> Order:
    return Order(symbol=symbol, side=OrderSide.BUY, quantity=Decimal(quantity), **overrides)


@pytest.fixture
def paper():
    return PaperAdapter(paper_config())


class TestPaperOrders:

    @pytest.mark.asyncio
    async def test_market_order_fills_at_last_price(self, paper):
        ack = await paper.submit_order(buy())

        assert ack.status is OrderStatus.FILLED
        assert ack.order_id.startswith("paper-")
        assert paper.cash == Decimal("900")
        account = await paper.get_account()
        assert account.positions[0].quantity == Decimal("10")
        assert account.equity == Decimal("1000")

    @pytest.mark.asyncio
    async def test_published_trade_moves_fill_price(self, paper):
        paper.publish(make_trade("ABC", "20.00"))

        await paper.submit_order(buy(quantity="5"))

        assert paper.cash == Decimal("900")

    @pytest.mark.asyncio
    async def test_set_price_drives_fills_and_last_price(self, paper):
        paper.set_price("ABC", Decimal("25"))

        await paper.submit_order(buy(quantity="4"))

        assert paper.cash == Decimal("900")
        paper.publish(make_trade("ABC", "30"))
        assert paper.last_price("ABC") == Decimal("30")
        assert paper.last_price("NOPE") is None

    @pytest.mark.asyncio
    async def test_resting_limit_order_is_accepted(self, paper):
        ack = await paper.submit_order(buy(order_type=OrderType.LIMIT, limit_price=Decimal("9")))

        assert ack.status is OrderStatus.ACCEPTED
        assert paper.cash == Decimal("1000")

    @pytest.mark.asyncio
    async def test_marketable_sell_limit_fills(self, paper):
        await paper.submit_order(buy())
        ack = await paper.submit_order(Order(symbol="ABC", side=OrderSide.SELL, quantity=Decimal("10"),
                                             order_type=OrderType.LIMIT, limit_price=Decimal("9")))

        assert ack.status is OrderStatus.FILLED
        assert paper.cash == Decimal("1000")
        assert (await paper.get_account()).positions == []

    @pytest.mark.asyncio
    async def test_rejections(self, paper):
        with pytest.raises(InsufficientFundsError):
            await paper.submit_order(buy(quantity="101"))
        with pytest.raises(InsufficientFundsError):
            await paper.submit_order(Order(symbol="ABC", side=OrderSide.SELL, quantity=Decimal("1")))
        with pytest.raises(UnknownSymbolError):
            await paper.submit_order(buy(symbol="NOPE"))

        await paper.submit_order(buy(quantity="1", client_order_id="once"))
        with pytest.raises(DuplicateOrderError):
            await paper.submit_order(buy(quantity="1", client_order_id="once"))

        paper.set_market_open(False)
        with pytest.raises(MarketClosedError) as exc_info:
            await paper.submit_order(buy(quantity="1"))
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_non_tradable_symbol(self):
        adapter = PaperAdapter(paper_config(non_tradable="HALT"))

        asset = await adapter.lookup_asset("HALT")
        assert not asset.tradable
        with pytest.raises(NotTradableError):
            await adapter.submit_order(buy(symbol="HALT", quantity="1"))

    @pytest.mark.asyncio
    async def test_cancel_order(self, paper):
        resting = await paper.submit_order(buy(order_type=OrderType.LIMIT, limit_price=Decimal("1")))
        filled = await paper.submit_order(buy(quantity="1"))

        await paper.cancel_order(resting.order_id)

        with pytest.raises(OrderRejectedError):
            await paper.cancel_order(resting.order_id)
        with pytest.raises(OrderRejectedError):
            await paper.cancel_order(filled.order_id)
        with pytest.raises(NotFoundError):
            await paper.cancel_order("paper-unknown")

    @pytest.mark.asyncio
    async def test_market_closed_option(self):
        adapter = PaperAdapter(paper_config(market_open="false"))

        with pytest.raises(MarketClosedError):
            await adapter.submit_order(buy(quantity="1"))


class TestPaperThroughClient:

    @pytest.mark.asyncio
    async def test_unknown_symbol_lookup_is_not_found(self, paper):
        async with TradingClient(paper, paper_config()) as client:
            with pytest.raises(NotFoundError):
                await client.get_asset("NOPE")

    @pytest.mark.asyncio
    async def test_stream_delivers_only_subscribed_symbols(self, paper):
        async with TradingClient(paper, paper_config()) as client:
            handle = await client.subscribe_to_data("ABC")

            assert paper.publish(make_trade("XYZ", "51")) == 0
            assert paper.publish(make_trade("ABC", "11")) == 1

            update = await handle.get(timeout=1)
            assert update.price == Decimal("11")
            assert paper.streams_opened == 1

    @pytest.mark.asyncio
    async def test_dropped_stream_is_reopened(self):
        config = paper_config(reconnection=ReconnectionSettings(base_delay_seconds=0.0, jitter_ratio=0.0))
        paper = PaperAdapter(config)
        async with TradingClient(paper, config) as client:
            handle = await client.subscribe_to_data("ABC")
            paper.drop_streams()

            await wait_until(lambda: paper.streams_opened == 2 and client.subscriptions.state is StreamState.LIVE)

            assert paper.publish(make_trade("ABC", "12")) == 1
            update = await handle.get(timeout=1)
            assert update.price == Decimal("12")
