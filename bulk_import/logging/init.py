from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

Every line written to stdout starts with its label (DEBUG|INFO|WARN|ERROR|SUMMARY)
so the CLI output can be grepped. Module loggers created with
``logging.getLogger(__name__)`` live under the ``bulk_import`` namespace and
propagate into the application logger configured here.

Structured per-row errors go to the JSON Lines ledger in
``bulk_import.logging.error_log``, not through this logger.
"""

__all__ = [
    "APP_LOGGER_NAME",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
]

APP_LOGGER_NAME = "bulk_import"

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formatter producing ``LABEL message`` lines."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        return f"{level_label} {record.getMessage()}"


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the application logger once.

    Args:
        debug: lower the threshold to DEBUG. Only honoured on the first call;
            later calls return the already configured logger.

    Returns:
        The application logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)

    # Keep lines out of the root logger to avoid duplicate output
    logger.propagate = False

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    """Log a message at SUMMARY level."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
    _logger = None
