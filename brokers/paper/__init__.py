"""In-memory simulated backend."""

from .adapter import PaperAdapter
from .stream import PaperMarketStream

__all__ = ["PaperAdapter", "PaperMarketStream"]
