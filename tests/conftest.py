"""
Pytest configuration and shared fixtures for the trading client tests.
"""
import pytest

from core.config.settings import ClientConfig, ReconnectionSettings
from core.trading import factory
from core.trading.client import TradingClient
from tests.mocks.fake_backend import FakeBackend


@pytest.fixture
def fast_reconnection():
    """Reconnect immediately, with a small retry budget."""
    return ReconnectionSettings(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0,
                                jitter_ratio=0.0, timeout_seconds=2.0)


@pytest.fixture
def fake_config(fast_reconnection):
    return ClientConfig(backend="fake", api_key="test-key", api_secret="test-secret",
                        reconnection=fast_reconnection)


@pytest.fixture
def fake_backend(fake_config):
    return FakeBackend(fake_config)


@pytest.fixture
async def client(fake_backend, fake_config):
    trading_client = TradingClient(fake_backend, fake_config)
    yield trading_client
    await trading_client.close()


@pytest.fixture
def registered_fake_backend(monkeypatch):
    """Register FakeBackend with the factory for the duration of a test."""
    monkeypatch.setitem(factory._BACKENDS, FakeBackend.name, FakeBackend)
    return FakeBackend
