"""Correlation ID context for REST calls.

Every authenticated REST call runs under its own correlation ID. The ID is
sent to Schwab in the ``Schwab-Client-CorrelId`` header and injected into all
log records emitted while the call is in flight, so a request, its 401
recovery and its retry can be grouped together in the logs.

Example:
    >>> from schwabdev.common.logging.context import CorrelationContext, get_correlation_id
    >>> with CorrelationContext() as correl_id:
    ...     get_correlation_id() == correl_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

CORRELATION_ID_HEADER = "Schwab-Client-CorrelId"


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """Get the correlation ID of the current async context, or None."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context.

    Raises:
        ValueError: If correlation_id is empty
    """
    if not correlation_id:
        raise ValueError("Correlation ID cannot be empty")
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation ID from the current context."""
    _correlation_id_var.set(None)


class CorrelationContext:
    """Context manager for scoped correlation ID management.

    Sets a correlation ID for a block of code and restores the previous value
    on exit.

    Args:
        correlation_id: ID to use. If None, a new one is generated.
    """

    def __init__(self, correlation_id: str | None = None) -> None:
        self.correlation_id = correlation_id or generate_correlation_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _correlation_id_var.set(self.correlation_id)
        return self.correlation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _correlation_id_var.reset(self._token)
            self._token = None
