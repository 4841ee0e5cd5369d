"""OAuth2 credential lifecycle for the Schwab API."""

from schwabdev.auth.console import terminal_reauthorizer
from schwabdev.auth.credential_store import CredentialStore
from schwabdev.auth.oauth import OAuthTokenClient
from schwabdev.auth.token_manager import Reauthorizer, TokenManager
from schwabdev.auth.types import CredentialRecord, TokenDictionary, TokenState, TokenStatus

__all__ = [
    "CredentialRecord",
    "CredentialStore",
    "OAuthTokenClient",
    "Reauthorizer",
    "TokenDictionary",
    "TokenManager",
    "TokenState",
    "TokenStatus",
    "terminal_reauthorizer",
]
