"""
Tests for the logging module.

Tests verify:
- JSON output carries event, level, timestamp and service fields
- DEBUG logs are suppressed at INFO level
- LogContext binds run context and leaves outer bindings alone
"""

import json
import logging

import pytest
import structlog

from changeledger.core.logging import LogContext, configure_logging, get_logger


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def _json_records(caplog) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "changeledger.tests"]


class TestConfigureLogging:
    def test_json_output(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="INFO", json_format=True)

        get_logger("changeledger.tests").info("engine.changeset_applied", change_id="001", author="ops")

        (record,) = _json_records(caplog)
        assert record["event"] == "engine.changeset_applied"
        assert record["change_id"] == "001"
        assert record["level"] == "info"
        assert record["service.name"] == "changeledger"
        assert "timestamp" in record

    def test_debug_suppressed_at_info(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="INFO", json_format=True)

        logger = get_logger("changeledger.tests")
        logger.debug("engine.examining")
        logger.info("engine.started")

        assert [r["event"] for r in _json_records(caplog)] == ["engine.started"]

    def test_debug_level_is_case_insensitive(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="debug", json_format=True)

        get_logger("changeledger.tests").debug("engine.examining")

        (record,) = _json_records(caplog)
        assert record["level"] == "debug"

    def test_context_is_merged(self, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="INFO", json_format=True)

        with LogContext(run_id="abc123"):
            get_logger("changeledger.tests").info("engine.started")

        (record,) = _json_records(caplog)
        assert record["run_id"] == "abc123"


class TestLogContext:
    def test_unbinds_on_exit(self):
        with LogContext(run_id="abc123", database="app"):
            assert structlog.contextvars.get_contextvars() == {"run_id": "abc123", "database": "app"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_keeps_outer_bindings(self):
        structlog.contextvars.bind_contextvars(deployment="d-1")
        with LogContext(run_id="abc123"):
            pass
        assert structlog.contextvars.get_contextvars() == {"deployment": "d-1"}
