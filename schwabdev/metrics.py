"""Prometheus metrics for token lifecycle, REST calls and streaming."""

from prometheus_client import Counter, Gauge

token_refresh_total = Counter(
    "schwab_token_refresh_total",
    "Access token refresh attempts",
    ["result"],  # success, failure
)
token_reauth_total = Counter(
    "schwab_token_reauth_total",
    "Interactive reauthorization attempts",
    ["result"],  # success, failure
)
rest_requests_total = Counter(
    "schwab_rest_requests_total",
    "Authenticated REST requests by method and status",
    ["method", "status"],
)
stream_reconnects_total = Counter(
    "schwab_stream_reconnects_total",
    "Streaming reconnects scheduled after a transient drop",
)
stream_commands_queued_total = Counter(
    "schwab_stream_commands_queued_total",
    "Stream commands queued because the session was not active",
)
stream_sessions_ended_total = Counter(
    "schwab_stream_sessions_ended_total",
    "Streaming sessions that ended, by reason",
    ["reason"],  # normal, unrecoverable, stopped, retries_exhausted, error
)
stream_active = Gauge(
    "schwab_stream_active",
    "1 while a streaming session is logged in and active",
)
