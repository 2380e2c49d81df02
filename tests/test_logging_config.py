"""Tests for logging configuration and formatters."""

import json
import logging

import pytest

from placement_guard.logging import ComponentLoggerAdapter, get_logger
from placement_guard.logging.config import (
    SERVICE_NAME,
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from placement_guard.logging.context import clear_log_context, log_context


@pytest.fixture(autouse=True)
def clean_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def logger():
    test_logger = logging.getLogger("test_logger")
    test_logger.setLevel(logging.DEBUG)
    test_logger.handlers.clear()

    yield test_logger

    test_logger.handlers.clear()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(logger, message="Test message", extra=None):
    return logger.makeRecord("test", logging.INFO, "test.py", 1, message, (), None, extra=extra)


def key_value_formatter():
    return KeyValueFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def test_json_formatter_basic(logger):
    log_obj = json.loads(JSONFormatter().format(make_record(logger)))

    assert log_obj["level"] == "INFO"
    assert log_obj["message"] == "Test message"
    assert log_obj["logger"] == "test"
    # 2025-01-15T12:00:00.123Z
    assert log_obj["timestamp"].endswith("Z")
    assert len(log_obj["timestamp"]) == 24


def test_json_formatter_with_extra_fields(logger):
    record = make_record(
        logger, extra={"event": "check_ins.dispatch.completed", "sent": 3, "had_errors": False}
    )

    log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "check_ins.dispatch.completed"
    assert log_obj["sent"] == 3
    assert log_obj["had_errors"] is False
    assert "name" not in log_obj


def test_json_formatter_stringifies_unknown_types(logger):
    from decimal import Decimal

    log_obj = json.loads(JSONFormatter().format(make_record(logger, extra={"fee": Decimal("24000.00")})))

    assert log_obj["fee"] == "24000.00"


def test_contextual_filter_adds_static_fields(logger):
    record = make_record(logger)

    ContextualFilter(environment="staging").filter(record)

    assert record.service == SERVICE_NAME
    assert record.environment == "staging"


def test_contextual_filter_adds_context_fields(logger):
    with log_context(run_id="abc123", introduction_id="intro-1"):
        record = make_record(logger)
        ContextualFilter().filter(record)

    assert record.run_id == "abc123"
    assert record.introduction_id == "intro-1"


def test_explicit_extra_beats_context(logger):
    with log_context(check_in_id="ci-context"):
        record = make_record(logger, extra={"check_in_id": "ci-explicit"})
        ContextualFilter().filter(record)

    assert record.check_in_id == "ci-explicit"


def test_json_formatter_with_context(logger):
    with log_context(run_id="abc123", job="expiry"):
        record = make_record(logger, "Expiry pass started", extra={"event": "expiry.run.started"})
        ContextualFilter(environment="test").filter(record)
        log_obj = json.loads(JSONFormatter().format(record))

    assert log_obj["event"] == "expiry.run.started"
    assert log_obj["service"] == "placement-guard"
    assert log_obj["run_id"] == "abc123"
    assert log_obj["job"] == "expiry"


def test_key_value_formatter(logger):
    record = make_record(
        logger, extra={"event": "flag.created", "count": 42, "reason": "hired there", "flagged": True}
    )

    output = key_value_formatter().format(record)

    assert "[INFO]" in output
    assert "Test message" in output
    assert "event=flag.created" in output
    assert "count=42" in output
    assert 'reason="hired there"' in output
    assert "flagged=true" in output


def test_key_value_formatter_hides_static_fields(logger):
    record = make_record(logger)
    ContextualFilter().filter(record)

    output = key_value_formatter().format(record)

    assert "service=" not in output
    assert "environment=" not in output


def test_component_logger_merges_extra(caplog):
    adapter = get_logger("placement_guard.test", component="payments")

    with caplog.at_level(logging.INFO, logger="placement_guard.test"):
        adapter.info("Reminder sent", extra={"event": "payments.reminder.sent"})

    assert isinstance(adapter, ComponentLoggerAdapter)
    record = caplog.records[-1]
    assert record.component == "payments"
    assert record.event == "payments.reminder.sent"


def test_get_logger_without_component():
    assert isinstance(get_logger("placement_guard.plain"), logging.Logger)


def test_configure_logging_invalid_level():
    with pytest.raises(ValueError, match="Invalid log level"):
        configure_logging(level="INVALID")


def test_configure_logging_invalid_format():
    with pytest.raises(ValueError, match="Invalid log format"):
        configure_logging(format_type="invalid")


@pytest.mark.parametrize("format_type,formatter", [("json", JSONFormatter), ("key-value", KeyValueFormatter)])
def test_configure_logging_formats(restore_root_logger, format_type, formatter):
    configure_logging(level="INFO", format_type=format_type, environment="test")

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, formatter)


def test_configure_logging_quiets_third_party(restore_root_logger):
    configure_logging(level="INFO")
    assert logging.getLogger("apscheduler").level == logging.WARNING

    logging.getLogger("apscheduler").setLevel(logging.NOTSET)
    configure_logging(level="DEBUG")
    assert logging.getLogger("apscheduler").level == logging.NOTSET
