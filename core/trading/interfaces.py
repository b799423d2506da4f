"""
Backend adapter contract.

Each supported broker ships an independent adapter type that satisfies these
protocols; the trading client and the subscription engine depend on nothing
else. Adapters map every provider-specific failure onto the error taxonomy in
core.utils.exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, ClassVar, Optional, Protocol, runtime_checkable

from core.config.settings import ClientConfig
from core.schemas.events import MarketUpdate
from core.schemas.models import Account, Asset, Order, OrderAcknowledgment


@dataclass(frozen=True)
class BackendCapabilities:
    """Optional behaviours an adapter advertises instead of the core assuming them."""

    idempotency_tokens: bool = False
    fractional_orders: bool = False
    streaming: bool = True


@runtime_checkable
class MarketStream(Protocol):
    """One live market-data connection owned by the subscription engine."""

    async def send_subscription(self, symbols: AbstractSet[str]) -> None:
        """Make the server-side subscription equal to `symbols` (idempotent)."""
        ...

    async def next_message(self) -> Optional[MarketUpdate]:
        """Return the next update, or None once the stream has ended."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class BrokerAdapter(Protocol):
    """Protocol translation for a single broker."""

    name: ClassVar[str]
    capabilities: ClassVar[BackendCapabilities]

    @classmethod
    def validate_config(cls, config: ClientConfig) -> None:
        """Raise ConfigurationError for missing or malformed credentials. No I/O."""
        ...

    async def submit_order(self, order: Order) -> OrderAcknowledgment:
        ...

    async def lookup_asset(self, symbol: str) -> Asset:
        ...

    async def cancel_order(self, order_id: str) -> None:
        ...

    async def get_account(self) -> Account:
        ...

    async def open_stream(self) -> MarketStream:
        ...

    async def aclose(self) -> None:
        ...
