"""
Client settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration. Every field can be set
with a ``SCHWAB_`` prefixed environment variable or in a ``.env`` file, e.g.
``SCHWAB_APP_KEY``, ``SCHWAB_APP_SECRET``, ``SCHWAB_CALLBACK_URL``.
"""

from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_KEY_LENGTH = 32
APP_SECRET_LENGTH = 16


class SchwabSettings(BaseSettings):
    """Schwab client configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHWAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App credentials (developer portal)
    app_key: str = Field(default="", description="Schwab app key (32 characters)")
    app_secret: SecretStr = Field(
        default=SecretStr(""), description="Schwab app secret (16 characters)"
    )
    callback_url: str = Field(
        default="https://127.0.0.1",
        description="Callback URL registered for the app",
    )

    # Credential record
    tokens_file: str = Field(default="tokens.json", description="Path of the flat token record")

    # REST
    base_api_url: str = Field(default="https://api.schwabapi.com")
    timeout: float = Field(default=10.0, gt=0, description="REST request timeout in seconds")

    # Token lifetimes as issued by Schwab
    access_token_timeout: int = Field(
        default=1800, ge=120, description="Access token lifetime in seconds"
    )
    refresh_token_timeout_days: int = Field(
        default=7, ge=2, description="Refresh token lifetime in days"
    )
    auto_refresh_interval: float = Field(
        default=60.0, gt=0, description="Seconds between background token checks"
    )

    # Streaming reconnect policy
    stream_reconnect_delay: float = Field(default=1.0, ge=0)
    stream_reconnect_backoff: float = Field(
        default=1.0, ge=1.0, description="Multiplier applied per reconnect (1.0 = fixed delay)"
    )
    stream_max_reconnect_delay: float = Field(default=60.0, ge=0)
    stream_max_reconnect_attempts: int | None = Field(
        default=None, ge=1, description="None means reconnect without limit"
    )
    stream_min_uptime: float = Field(
        default=60.0,
        ge=0,
        description="Abnormal closes before this many seconds of uptime end the session",
    )

    log_level: str = Field(default="INFO")


@lru_cache
def get_settings() -> SchwabSettings:
    """
    Get cached settings instance.

    Example:
        >>> settings = get_settings()
        >>> settings.tokens_file
        'tokens.json'
    """
    return SchwabSettings()
