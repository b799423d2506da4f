"""Exponential reconnection backoff with jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Optional

from core.config.settings import ReconnectionSettings


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter_ratio: float = 0.1

    @classmethod
    def from_settings(cls, settings: ReconnectionSettings) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            multiplier=settings.backoff_multiplier,
            jitter_ratio=settings.jitter_ratio,
        )

    def exhausted(self, failures: int) -> bool:
        """True once `failures` consecutive failures exceed the attempt budget."""
        return failures > self.max_attempts

    def delay(self, attempt: int, rand: Optional[Callable[[float, float], float]] = None) -> float:
        """Delay in seconds before reconnection attempt number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter_ratio and delay:
            rand = rand or random.uniform
            delay += rand(0.0, delay * self.jitter_ratio)
        return delay
