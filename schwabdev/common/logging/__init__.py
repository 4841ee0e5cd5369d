"""Structured logging for the Schwab client.

Usage:
    from schwabdev.common.logging import configure_logging, CorrelationContext

    configure_logging(app_name="api_demo", log_level="INFO")

    with CorrelationContext():
        ...  # every log line here carries the same correlation_id
"""

from schwabdev.common.logging.config import (
    CorrelationIDFilter,
    configure_logging,
    get_logger,
    log_with_context,
)
from schwabdev.common.logging.context import (
    CORRELATION_ID_HEADER,
    CorrelationContext,
    clear_correlation_id,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from schwabdev.common.logging.formatter import JSONFormatter

__all__ = [
    "configure_logging",
    "get_logger",
    "log_with_context",
    "CorrelationIDFilter",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "CorrelationContext",
    "CORRELATION_ID_HEADER",
    "JSONFormatter",
]
