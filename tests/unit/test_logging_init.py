from __future__ import annotations

import logging
from io import StringIO
from unittest.mock import patch

import bulk_import.logging.init as log_init
from bulk_import.logging.init import (
    APP_LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def _capture(logger: logging.Logger) -> StringIO:
    captured = StringIO()
    logger.handlers[0].setStream(captured)
    return captured


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()

    assert logger.name == APP_LOGGER_NAME == "bulk_import"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert isinstance(handler.formatter, LabeledFormatter)
    assert logger.propagate is False


def test_logging_labeled_prefixes():
    """Every line starts with INFO|WARN|ERROR|SUMMARY."""
    logger = setup_logging()
    captured = _capture(logger)

    logger.info("Test info message")
    logger.warning("Test warning message")
    logger.error("Test error message")
    logger.log(SUMMARY_LEVEL, "Test summary message")

    lines = captured.getvalue().strip().split("\n")
    assert lines == [
        "INFO Test info message",
        "WARN Test warning message",
        "ERROR Test error message",
        "SUMMARY Test summary message",
    ]


def test_module_loggers_propagate_into_app_logger():
    logger = setup_logging()
    captured = _capture(logger)

    logging.getLogger("bulk_import.commit.bulk_operations").info("batch done")

    assert captured.getvalue().strip() == "INFO batch done"


def test_debug_flag_lowers_threshold():
    logger = setup_logging(debug=True)
    captured = _capture(logger)

    logger.debug("details")

    assert logger.level == logging.DEBUG
    assert "DEBUG details" in captured.getvalue()


def test_debug_messages_hidden_by_default():
    logger = setup_logging()
    captured = _capture(logger)
    logger.debug("hidden")
    assert captured.getvalue() == ""


def test_get_logger_returns_configured_logger():
    setup_logger = setup_logging()
    assert get_logger() is setup_logger


def test_setup_logging_idempotent():
    logger1 = setup_logging()
    logger2 = setup_logging(debug=True)
    assert logger1 is logger2
    assert len(logger1.handlers) == 1
    # debug only honoured on the first call
    assert logger1.level == logging.INFO


def test_summary_level_registered():
    setup_logging()
    assert logging.getLevelName(SUMMARY_LEVEL) == "SUMMARY"


def test_log_summary_convenience_function():
    logger = setup_logging()
    captured = _capture(logger)

    log_summary("entity=cliente rows=3 valid=3 errors=0")

    assert captured.getvalue().strip() == "SUMMARY entity=cliente rows=3 valid=3 errors=0"


def test_reset_logging_clears_state():
    logger = setup_logging()
    reset_logging()
    assert log_init._logger is None
    assert logger.handlers == []
    assert logger.propagate is True


def test_logging_with_progress_bar_disabled():
    with patch("sys.stdout.isatty", return_value=False):
        logger = setup_logging()
        logger.info("Test message when not TTY")
        assert logger.level == logging.INFO
