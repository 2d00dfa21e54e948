import json
import logging
import sys

import pytest

from core.errors import (
    ConfigError,
    CostLimitExceededError,
    NoProviderAvailableError,
    ProviderError,
    QueueClearedError,
    ShrinkError,
    TransientProviderError,
)
from core.config import AppSettings
from core.logging import JsonFormatter, configure_logging, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


# --- Logging ---

def test_setup_logging_with_json_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "shrink.log"
    logger = setup_logging("debug", log_file=log_file)

    logger.info("queue drained")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logger.name == "shrink"
    assert logging.getLogger().level == logging.DEBUG
    entry = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert entry["message"] == "queue drained"
    assert entry["level"] == "INFO"


def test_setup_logging_console_only(restore_root_logger):
    setup_logging(logging.WARNING)
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING


def test_configure_logging_from_settings(tmp_path, monkeypatch, restore_root_logger):
    log_file = tmp_path / "shrink.log"
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("LOG_FILE", str(log_file))

    logger = configure_logging(AppSettings(_env_file=None))
    logger.debug("settings applied")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert json.loads(log_file.read_text().strip())["message"] == "settings applied"

def test_json_formatter_includes_exception():
    try:
        raise ValueError("bad reply")
    except ValueError:
        record = logging.LogRecord("shrink", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "failed"
    assert "ValueError: bad reply" in payload["exc_info"]


# --- Errors ---

def test_error_hierarchy():
    for error in (ConfigError("x"), ProviderError("x"), NoProviderAvailableError(),
                  CostLimitExceededError(), QueueClearedError()):
        assert isinstance(error, ShrinkError)
    assert issubclass(TransientProviderError, ProviderError)


def test_error_details():
    assert str(CostLimitExceededError("daily")) == "Cost limit exceeded (daily)"
    assert CostLimitExceededError("monthly").limit_type == "monthly"
    assert str(NoProviderAvailableError()) == "No AI provider available"
    assert str(QueueClearedError()) == "Queue cleared"

    error = TransientProviderError("overloaded", provider="claude", status_code=529)
    assert (error.provider, error.status_code) == ("claude", 529)
