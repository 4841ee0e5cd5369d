"""Credential masking for logs.

Access, refresh and id tokens, the app secret and the streamer login
``Authorization`` parameter must never reach a log line in clear text.
"""

from __future__ import annotations

import re
from typing import Any

BEARER_PATTERN = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/@=-]+)")
# "access_token": "...", "Authorization": "..." as found in serialized frames/bodies
JSON_TOKEN_PATTERN = re.compile(
    r'("(?:Authorization|access_token|refresh_token|id_token|code)"\s*:\s*")([^"]+)(")'
)

_SENSITIVE_KEY_PARTS = ("token", "secret", "password", "authorization")


def mask_token(token: str | None) -> str:
    """Mask a credential, keeping only its last four characters."""
    if not token:
        return "***"
    return f"***{token[-4:]}" if len(token) > 8 else "***"


def mask_tokens_in_text(text: str) -> str:
    """Mask bearer tokens and JSON token fields embedded in free text."""
    sanitized = BEARER_PATTERN.sub(lambda m: m.group(1) + mask_token(m.group(2)), text)
    sanitized = JSON_TOKEN_PATTERN.sub(
        lambda m: m.group(1) + mask_token(m.group(2)) + m.group(3), sanitized
    )
    return sanitized


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, list):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_sanitize_value(item) for item in value)
    if isinstance(value, str):
        return mask_tokens_in_text(value)
    return value


def sanitize_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively mask values stored under credential-like keys."""
    sanitized: dict[str, Any] = {}
    for raw_key, raw_value in data.items():
        key = str(raw_key).lower()
        if any(part in key for part in _SENSITIVE_KEY_PARTS) and isinstance(raw_value, str):
            sanitized[raw_key] = mask_token(raw_value)
        else:
            sanitized[raw_key] = _sanitize_value(raw_value)
    return sanitized


def sanitize_frame(frame: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a stream request frame safe for logging."""
    return sanitize_dict(frame)
