"""
Centralized identifier generation.

Client order ids double as idempotency tokens, so they must be unique per
submission attempt and short enough for broker limits (Alpaca allows 128
characters).
"""

from __future__ import annotations

import time
from uuid import uuid4


def generate_event_id() -> str:
    """Timestamp (ms) hex prefix + uuid4 suffix; coarse ordering, globally unique."""
    ts_ms = int(time.time() * 1000)
    return f"{ts_ms:013x}-{str(uuid4())[14:]}"


def generate_client_order_id(prefix: str = "utc") -> str:
    """Generate an idempotency token for an order submission."""
    return f"{prefix}-{uuid4().hex}"
