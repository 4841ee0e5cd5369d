"""Schwab Streamer websocket session."""

from schwabdev.streaming.services import StreamServices, list_to_string
from schwabdev.streaming.session import StreamSession, in_market_hours
from schwabdev.streaming.types import ReconnectPolicy, SessionState, StreamerDescriptor

__all__ = [
    "ReconnectPolicy",
    "SessionState",
    "StreamServices",
    "StreamSession",
    "StreamerDescriptor",
    "in_market_hours",
    "list_to_string",
]
