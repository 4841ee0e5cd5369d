"""Logging setup for applications using the Schwab client.

The library itself only calls ``logging.getLogger(__name__)``; applications
call ``configure_logging()`` once at startup to get JSON output with the
per-request correlation ID attached.

Example:
    >>> from schwabdev.common.logging import configure_logging
    >>> logger = configure_logging(app_name="stream_demo", log_level="DEBUG")
    >>> logger.info("Stream starting", extra={"context": {"symbols": 2}})
"""

import logging
import sys

from schwabdev.common.logging.context import get_correlation_id
from schwabdev.common.logging.formatter import JSONFormatter


class CorrelationIDFilter(logging.Filter):
    """Logging filter that copies the current correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def configure_logging(
    app_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Args:
        app_name: Name reported in every log line
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to include extra context fields in output

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates on repeated calls
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(app_name=app_name, include_context=include_context))
    handler.addFilter(CorrelationIDFilter())

    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger by name (typically ``__name__``)."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context_fields: object,
) -> None:
    """Log a message with context fields rendered under ``context``.

    Example:
        >>> log_with_context(logger, "WARNING", "Stream request queued", service="QUOTE")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra={"context": context_fields})
