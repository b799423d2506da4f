import logging

import pytest
import structlog
from structlog.testing import capture_logs

import core.logging as core_logging
from core.config.settings import LoggingSettings, Settings
from core.logging import (
    LogChannel,
    bind_broker_context,
    configure_logging,
    filter_by_channel_level,
    get_logger,
    get_market_data_logger_safe,
    make_redaction_processor,
)


def test_redaction_processor_masks_nested_secrets():
    redact = make_redaction_processor(["api_secret", "APCA-API-SECRET-KEY"])
    event = {
        "event": "request",
        "api_secret": "s3cr3t",
        "headers": {"apca-api-secret-key": "abc", "accept": "application/json"},
        "items": [{"api_secret": "x"}],
    }

    out = redact(None, "info", event)

    assert out["api_secret"] == "[REDACTED]"
    assert out["headers"]["apca-api-secret-key"] == "[REDACTED]"
    assert out["headers"]["accept"] == "application/json"
    assert out["items"][0]["api_secret"] == "[REDACTED]"


def test_channel_filter_drops_below_channel_minimum():
    event = {"event": "noise", "channel": LogChannel.ERROR.value, "level": "info"}

    with pytest.raises(structlog.DropEvent):
        filter_by_channel_level(None, "info", event)

    kept = {"event": "boom", "channel": LogChannel.ERROR.value, "level": "error"}
    assert filter_by_channel_level(None, "error", kept) is kept


def test_channel_and_broker_context_bound():
    with capture_logs() as logs:
        logger = bind_broker_context(get_market_data_logger_safe("stream"), "alpaca", feed="iex")
        logger.info("Stream state changed", state="live")

    assert logs[0]["channel"] == "market_data"
    assert logs[0]["broker"] == "alpaca"
    assert logs[0]["broker_context"] == "alpaca"
    assert logs[0]["feed"] == "iex"


def test_component_binding():
    with capture_logs() as logs:
        get_logger("factory", component="client_factory").info("built")

    assert logs[0]["component"] == "client_factory"


def test_configure_logging_runs_once(monkeypatch, request):
    calls = []
    monkeypatch.setattr(structlog, "configure", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(core_logging, "_logging_configured", False)
    root = logging.getLogger()
    request.addfinalizer(lambda level=root.level: root.setLevel(level))

    configure_logging(Settings(_env_file=None, logging=LoggingSettings(console_enabled=False, level="warning")))
    configure_logging(LoggingSettings())

    assert len(calls) == 1
    assert redact_in(calls[0]["processors"])
    assert root.level == logging.WARNING


def redact_in(processors) -> bool:
    return any(getattr(p, "__name__", "") == "redact_sensitive" for p in processors)
