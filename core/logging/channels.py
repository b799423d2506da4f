"""
Logging channel definitions.
Every logger is bound to one channel so records can be routed and filtered per component.
"""

from enum import Enum
from typing import Dict


class LogChannel(str, Enum):
    """Logging channels for different components."""

    APPLICATION = "application"  # General application logs
    TRADING = "trading"          # Order submission and acknowledgments
    MARKET_DATA = "market_data"  # Subscription engine and streams
    API = "api"                  # Broker REST requests/responses
    ERROR = "error"              # Error logs


# Minimum level per channel; records below it are dropped by the channel filter
CHANNEL_LEVELS: Dict[LogChannel, str] = {
    LogChannel.APPLICATION: "INFO",
    LogChannel.TRADING: "INFO",
    LogChannel.MARKET_DATA: "INFO",
    LogChannel.API: "INFO",
    LogChannel.ERROR: "WARNING",
}


def get_channel_level(channel: LogChannel) -> str:
    return CHANNEL_LEVELS.get(channel, "INFO")
