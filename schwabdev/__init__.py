"""
Async client for the Schwab Trader and Market Data APIs.

Usage:
    from schwabdev import SchwabClient, get_settings, terminal_reauthorizer

    client = SchwabClient(get_settings(), reauthorize=lambda: terminal_reauthorizer(client.tokens))
    async with client:
        print(await client.account_linked())
"""

from schwabdev.api import SchwabClient, is_error_response
from schwabdev.auth import TokenManager, terminal_reauthorizer
from schwabdev.config import SchwabSettings, get_settings
from schwabdev.exceptions import SchwabError
from schwabdev.streaming import SessionState, StreamSession

__version__ = "0.3.0"

__all__ = [
    "SchwabClient",
    "SchwabError",
    "SchwabSettings",
    "SessionState",
    "StreamSession",
    "TokenManager",
    "get_settings",
    "is_error_response",
    "terminal_reauthorizer",
]
