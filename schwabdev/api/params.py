"""Query parameter helpers for the REST endpoints."""

from collections.abc import Iterable
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from schwabdev.auth.types import from_epoch_ms, to_epoch_ms

TimeValue = datetime | date | int | str


class TimeFormat(str, Enum):
    """Wire formats used for dates by the Schwab endpoints."""

    ISO_8601 = "8601"
    EPOCH = "epoch"
    EPOCH_MS = "epoch_ms"
    DATE = "YYYY-MM-DD"


def clean_params(params: dict[str, Any]) -> dict[str, Any]:
    """Drop None values; booleans are sent as ``true``/``false``."""
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        cleaned[key] = str(value).lower() if isinstance(value, bool) else value
    return cleaned


def format_list(value: Iterable[str] | str | None) -> str | None:
    """``["AMD", "INTC"]`` -> ``"AMD,INTC"``; strings pass through."""
    if value is None or isinstance(value, str):
        return value
    return ",".join(str(item) for item in value)


def _to_datetime(value: TimeValue) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, int):
        return from_epoch_ms(value)
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    # Naive values are taken as UTC
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def time_convert(
    value: TimeValue | None, form: TimeFormat | str = TimeFormat.ISO_8601
) -> str | int | None:
    """
    Convert a datetime, date, epoch-milliseconds int or ISO string to the
    format an endpoint expects.

    Example:
        >>> time_convert(datetime(2024, 1, 2, tzinfo=UTC), TimeFormat.EPOCH_MS)
        1704153600000
        >>> time_convert("2024-01-02T15:30:00", TimeFormat.DATE)
        '2024-01-02'
    """
    if value is None:
        return None
    dt = _to_datetime(value)
    form = TimeFormat(form)
    if form is TimeFormat.ISO_8601:
        return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if form is TimeFormat.EPOCH:
        return int(dt.timestamp())
    if form is TimeFormat.EPOCH_MS:
        return to_epoch_ms(dt)
    return dt.date().isoformat()
