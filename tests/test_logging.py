"""Tests for logging utilities."""

from __future__ import annotations

import json
import logging

from inbox_relay.core.config import LoggingSettings
from inbox_relay.core.logging import configure_logging


def test_configure_logging_sets_root_level() -> None:
    """configure_logging should set the root logger level according to settings."""

    settings = LoggingSettings(level="DEBUG", structured=False)
    configure_logging(settings)
    assert logging.getLogger().level == logging.DEBUG


def test_configure_logging_quiets_http_client_loggers() -> None:
    """HTTP client libraries should not echo request traffic at DEBUG."""

    configure_logging(LoggingSettings(level="DEBUG", structured=True))
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
    assert logging.getLogger("imapclient").level == logging.WARNING


def test_structured_logs_escape_quotes() -> None:
    """Messages containing quotes must still produce valid JSON."""

    configure_logging(LoggingSettings(level="INFO", structured=True))
    handler = logging.getLogger().handlers[0]
    record = logging.LogRecord(
        name="inbox_relay.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg='Folder "%s" missing',
        args=("Sent",),
        exc_info=None,
    )

    payload = json.loads(handler.format(record))

    assert payload["message"] == 'Folder "Sent" missing'
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "inbox_relay.test"
