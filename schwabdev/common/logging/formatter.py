"""JSON log formatter.

Example log output:
    {
        "timestamp": "2025-10-21T10:30:00.000Z",
        "level": "INFO",
        "app": "schwabdev",
        "correlation_id": "0b6f3c1e-...",
        "logger": "schwabdev.auth.token_manager",
        "message": "Access token refreshed",
        "context": {"attempt": 1}
    }
"""

import json
import logging
import traceback
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

from schwabdev.common.log_sanitizer import mask_tokens_in_text, sanitize_dict

_RESERVED_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "correlation_id",
    "context",
    "exc_info",
    "exc_text",
    "stack_info",
}


class JSONFormatter(logging.Formatter):
    """Formatter that renders log records as single-line JSON.

    Token-looking values in the message and in context fields are masked
    before rendering.

    Attributes:
        app_name: Name reported in the ``app`` field
        include_context: Whether to include extra context fields
    """

    def __init__(
        self, app_name: str, include_context: bool = True, *args: Any, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.app_name = app_name
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "app": self.app_name,
            "correlation_id": getattr(record, "correlation_id", None),
            "logger": record.name,
            "message": mask_tokens_in_text(record.getMessage()),
        }

        if self.include_context:
            context = self._extract_context(record)
            if context:
                log_entry["context"] = sanitize_dict(context)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self._format_exception(record.exc_info),
            }

        return json.dumps(log_entry, default=str)

    def _format_timestamp(self, created: float) -> str:
        """Format a LogRecord timestamp as ISO 8601 UTC with milliseconds."""
        dt = datetime.fromtimestamp(created, tz=UTC)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def _extract_context(self, record: logging.LogRecord) -> dict[str, Any] | None:
        """Return the ``context`` extra if given, otherwise all non-reserved extras."""
        context = getattr(record, "context", None)
        if context and isinstance(context, dict):
            return dict(context)

        extra = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_FIELDS}
        return extra if extra else None

    def _format_exception(
        self,
        exc_info: tuple[type[BaseException] | None, BaseException | None, TracebackType | None],
    ) -> str:
        return "".join(traceback.format_exception(*exc_info))
