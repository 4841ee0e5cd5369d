"""Shared fixtures for schwabdev tests."""

from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from schwabdev.auth.credential_store import CredentialStore
from schwabdev.auth.oauth import OAuthTokenClient
from schwabdev.auth.token_manager import TokenManager
from schwabdev.auth.types import TokenDictionary
from schwabdev.config import SchwabSettings
from tests.schwabdev.fakes import APP_KEY, APP_SECRET, BASE_URL, NOW, authorizing, token_dict


@pytest.fixture()
def tokens_path(tmp_path: Path) -> Path:
    return tmp_path / "tokens.json"


@pytest.fixture()
def store(tokens_path: Path) -> CredentialStore:
    return CredentialStore(tokens_path)


@pytest.fixture()
def oauth() -> Mock:
    """Token grant client with mocked network calls."""
    client = Mock(spec=OAuthTokenClient)
    client.refresh = AsyncMock(return_value=TokenDictionary(**token_dict("refreshed")))
    client.exchange_code = AsyncMock(return_value=TokenDictionary(**token_dict("authorized")))
    client.parse_authorization_code = OAuthTokenClient.parse_authorization_code
    client.authorization_url.return_value = f"{BASE_URL}/v1/oauth/authorize?client_id={APP_KEY}"
    return client


@pytest.fixture()
def make_manager(store: CredentialStore, oauth: Mock):
    """Build a TokenManager on a fixed clock.

    Without an explicit handler, reauthorization completes with the mocked
    code exchange.
    """

    def _make(reauthorize: AsyncMock | None = None, now: datetime = NOW) -> TokenManager:
        manager = TokenManager(
            store=store,
            oauth=oauth,
            reauthorize=reauthorize or AsyncMock(),
            time_fn=lambda: now,
        )
        if reauthorize is None:
            manager._reauthorize = authorizing(manager)
        return manager

    return _make


@pytest.fixture()
def settings(tokens_path: Path) -> SchwabSettings:
    return SchwabSettings(
        app_key=APP_KEY,
        app_secret=APP_SECRET,
        callback_url="https://127.0.0.1",
        tokens_file=str(tokens_path),
        base_api_url=BASE_URL,
    )
