"""
Streaming Type Definitions

Session states, the streamer descriptor obtained from user preferences and
the reconnect policy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from schwabdev.config import SchwabSettings
from schwabdev.exceptions import StreamError


class SessionState(str, Enum):
    """Streaming session lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LOGIN_PENDING = "login_pending"
    ACTIVE = "active"
    CLOSING = "closing"


class StreamerDescriptor(BaseModel):
    """
    Connection details from ``streamerInfo[0]`` of ``/trader/v1/userPreference``.

    Immutable once obtained; a session fetches it at most once.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    socket_url: str = Field(..., alias="streamerSocketUrl")
    customer_id: str = Field(..., alias="schwabClientCustomerId")
    correl_id: str = Field(..., alias="schwabClientCorrelId")
    channel: str = Field(..., alias="schwabClientChannel")
    function_id: str = Field(..., alias="schwabClientFunctionId")

    @classmethod
    def from_preferences(cls, preferences: Any) -> "StreamerDescriptor":
        """
        Extract the descriptor from a user preferences response.

        Raises:
            StreamError: If the response has no usable streamerInfo
        """
        if not isinstance(preferences, dict):
            raise StreamError("User preferences response is not an object")
        info = preferences.get("streamerInfo")
        if not info:
            raise StreamError(f"No streamerInfo in user preferences: {preferences}")
        try:
            return cls.model_validate(info[0])
        except ValidationError as e:
            raise StreamError(f"Invalid streamerInfo: {e.error_count()} validation error(s)") from e


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    When and how often a dropped stream is reconnected.

    Attributes:
        delay: Seconds before the first reconnect
        backoff: Multiplier applied per consecutive reconnect (1.0 = fixed delay);
            the count starts over once a reconnect logs in
        max_delay: Upper bound for the delay
        max_attempts: Consecutive reconnects allowed without a successful login;
            None means unlimited
        min_uptime: Abnormal closes sooner than this after connecting are final
    """

    delay: float = 1.0
    backoff: float = 1.0
    max_delay: float = 60.0
    max_attempts: int | None = None
    min_uptime: float = 60.0

    @classmethod
    def from_settings(cls, settings: SchwabSettings) -> "ReconnectPolicy":
        return cls(
            delay=settings.stream_reconnect_delay,
            backoff=settings.stream_reconnect_backoff,
            max_delay=settings.stream_max_reconnect_delay,
            max_attempts=settings.stream_max_reconnect_attempts,
            min_uptime=settings.stream_min_uptime,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect number ``attempt`` (0-based)."""
        return min(self.delay * self.backoff**attempt, self.max_delay)

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt < self.max_attempts
