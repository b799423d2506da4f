"""Market data subscription engine: one shared stream, many caller handles."""

from .backoff import BackoffPolicy
from .engine import ConnectionStats, StreamState, SubscriptionEngine
from .subscription import SubscriptionHandle

__all__ = [
    "BackoffPolicy",
    "ConnectionStats",
    "StreamState",
    "SubscriptionEngine",
    "SubscriptionHandle",
]
