"""Tests for the log channels."""

import logging

from catalog_sync.utils.logger import ContextFormatter, get_error_logger, get_sync_logger


def test_context_formatter_appends_details():
    """Test the details extra is rendered after the message."""
    formatter = ContextFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("catalog_sync.error", logging.ERROR, __file__, 1, "failed", None, None)
    record.details = {"topic": "orders/create", "event_id": "evt-1"}

    assert formatter.format(record) == 'ERROR failed | {"event_id": "evt-1", "topic": "orders/create"}'


def test_context_formatter_without_details():
    formatter = ContextFormatter("%(message)s")
    record = logging.LogRecord("catalog_sync.sync", logging.INFO, __file__, 1, "ok", None, None)

    assert formatter.format(record) == "ok"


def test_channels_are_configured_once():
    """Test repeated lookups do not stack handlers."""
    first = get_sync_logger()
    count = len(first.handlers)

    assert get_sync_logger() is first
    assert len(first.handlers) == count
    assert first.name == "catalog_sync.sync"
    assert get_error_logger().level == logging.ERROR
