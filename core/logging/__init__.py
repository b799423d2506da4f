# Structured logging with channel support
import sys
import logging
import structlog
from typing import Any, Dict, Iterable, Optional, Union

from core.config.settings import LoggingSettings, Settings
from .channels import LogChannel, get_channel_level

# Global flag to prevent duplicate logging configuration
_logging_configured = False

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def make_redaction_processor(keys: Iterable[str]):
    """Build a structlog processor that redacts sensitive fields recursively."""
    keys_to_redact = {k.lower() for k in keys}

    def _redact(obj):
        if isinstance(obj, dict):
            out = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in keys_to_redact:
                    out[k] = "[REDACTED]"
                else:
                    out[k] = _redact(v)
            return out
        if isinstance(obj, (list, tuple)):
            return [_redact(v) for v in obj]
        return obj

    def redact_sensitive(logger, name, event_dict):
        return _redact(event_dict)

    return redact_sensitive


def filter_by_channel_level(logger, name, event_dict):
    """Drop records below the minimum level of their channel."""
    channel = event_dict.get("channel")
    if not channel:
        return event_dict
    try:
        minimum = get_channel_level(LogChannel(channel))
    except ValueError:
        return event_dict
    level = _LEVELS.get(str(event_dict.get("level", name)).upper(), 20)
    if level < _LEVELS[minimum]:
        raise structlog.DropEvent
    return event_dict


def configure_logging(settings: Union[Settings, LoggingSettings, None] = None) -> None:
    """Configure stdlib logging and structlog once per process."""
    global _logging_configured

    if _logging_configured:
        return

    if isinstance(settings, Settings):
        log_settings = settings.logging
    else:
        log_settings = settings or LoggingSettings()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_settings.level)

    if log_settings.console_enabled:
        renderer = (
            structlog.processors.JSONRenderer()
            if log_settings.json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_settings.level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=renderer,
                foreign_pre_chain=[
                    structlog.stdlib.add_log_level,
                    structlog.stdlib.add_logger_name,
                    structlog.processors.TimeStamper(fmt="iso"),
                ],
            )
        )
        root_logger.addHandler(console_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            filter_by_channel_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            make_redaction_processor(log_settings.redact_keys),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _logging_configured = True


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    logger = structlog.get_logger(name)
    if component:
        logger = logger.bind(component=component)
    return logger


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    return get_logger(name).bind(channel=channel.value)


def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a trading logger safely."""
    return get_channel_logger(name, LogChannel.TRADING)


def get_market_data_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a market data logger safely."""
    return get_channel_logger(name, LogChannel.MARKET_DATA)


def get_api_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an API logger safely."""
    return get_channel_logger(name, LogChannel.API)


def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an error logger safely."""
    return get_channel_logger(name, LogChannel.ERROR)


def bind_broker_context(logger: structlog.BoundLogger, broker: str, **extra: Any) -> structlog.BoundLogger:
    """Bind broker context consistently to a logger.

    Adds both `broker` and `broker_context` fields plus any extra context.
    Returns a new BoundLogger with the context applied.
    """
    ctx: Dict[str, Any] = {"broker": broker, "broker_context": broker}
    ctx.update(extra)
    return logger.bind(**ctx)


__all__ = [
    "LogChannel",
    "configure_logging",
    "get_logger",
    "get_channel_logger",
    "get_trading_logger_safe",
    "get_market_data_logger_safe",
    "get_api_logger_safe",
    "get_error_logger_safe",
    "bind_broker_context",
    "make_redaction_processor",
    "filter_by_channel_level",
]
