"""Tests for the structlog + stdlib logging setup."""

import json
import logging
import sys

import pytest
import structlog
from bistro.utils.logging import QUIET_LOGGERS, add_context, clear_context, configure_logging, get_log_level


@pytest.fixture()
def production_logging(monkeypatch, tmp_path):
    """Configure logging as production would, then put the old setup back."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ENV", "production")
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    quiet = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}

    yield configure_logging

    root.handlers = handlers
    root.setLevel(level)
    for name, previous in quiet.items():
        logging.getLogger(name).setLevel(previous)
    clear_context()
    structlog.reset_defaults()


class TestLogLevel:
    def test_level_follows_environment(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("ENV", "development")
        assert get_log_level() == "DEBUG"
        monkeypatch.setenv("ENV", "production")
        assert get_log_level() == "INFO"

    def test_explicit_level_wins(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.setenv("LOG_LEVEL", "error")
        assert get_log_level() == "ERROR"


class TestConfigureLogging:
    def test_only_a_stdout_handler_is_installed(self, production_logging, tmp_path):
        production_logging()

        (handler,) = logging.getLogger().handlers
        assert type(handler) is logging.StreamHandler
        assert handler.stream is sys.stdout
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("protean").level == logging.WARNING
        assert list(tmp_path.iterdir()) == []

    def test_json_lines_carry_service_and_request_context(self, production_logging, capsys):
        production_logging()
        add_context(method="POST", path="/orders")

        structlog.get_logger("bistro.order").info("Order placed", order_id="order-1")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "Order placed"
        assert line["order_id"] == "order-1"
        assert line["service"] == "bistro-core"
        assert line["path"] == "/orders"
        assert line["level"] == "info"
