from .settings import (
    ClientConfig,
    Environment,
    LoggingSettings,
    ReconnectionSettings,
    Settings,
    StreamSettings,
)

__all__ = [
    "ClientConfig",
    "Environment",
    "LoggingSettings",
    "ReconnectionSettings",
    "Settings",
    "StreamSettings",
]
