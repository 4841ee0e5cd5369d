"""OAuth2 token grants against the Schwab token endpoint.

Implements the two grants the client needs:
1. authorization_code: exchange the code from the consent redirect for tokens
2. refresh_token: obtain a new access token with the refresh token

Both are form-encoded POSTs authenticated with HTTP Basic (app key / app
secret). The response body is the token dictionary.
"""

import logging
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from pydantic import ValidationError

from schwabdev.auth.types import TokenDictionary
from schwabdev.exceptions import RefreshFailed, TokenGrantError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.schwabapi.com"


class OAuthTokenClient:
    """Builds the consent URL and performs token grants."""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        callback_url: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the grant client.

        Args:
            app_key: Schwab app key (OAuth client id)
            app_secret: Schwab app secret (OAuth client secret)
            callback_url: Redirect URI registered for the app
            base_url: API host
            timeout: Request timeout in seconds
            http_client: Shared client; a short-lived one is created per call if None
        """
        self.app_key = app_key
        self._app_secret = app_secret
        self.callback_url = callback_url
        self.timeout = timeout
        self._http_client = http_client

        self.authorization_endpoint = f"{base_url.rstrip('/')}/v1/oauth/authorize"
        self.token_endpoint = f"{base_url.rstrip('/')}/v1/oauth/token"

    def authorization_url(self) -> str:
        """URL the user opens to grant this app access to their account."""
        query = urlencode({"client_id": self.app_key, "redirect_uri": self.callback_url})
        return f"{self.authorization_endpoint}?{query}"

    @staticmethod
    def parse_authorization_code(response_url: str) -> str:
        """Extract the authorization code from the URL the browser was redirected to.

        The code must be URL-decoded before use (it ends in ``@``, which appears
        as ``%40`` in the redirect); ``parse_qs`` takes care of that.

        Raises:
            ValueError: If the URL has no ``code`` parameter
        """
        values = parse_qs(urlsplit(response_url.strip()).query).get("code")
        if not values or not values[0]:
            raise ValueError("Redirect URL does not contain an authorization code")
        return values[0]

    async def exchange_code(self, code: str) -> TokenDictionary:
        """Exchange an authorization code for access, refresh and id tokens.

        Raises:
            TokenGrantError: If the token endpoint rejects the code or is unreachable
        """
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.callback_url,
            },
            error_cls=TokenGrantError,
        )

    async def refresh(self, refresh_token: str) -> TokenDictionary:
        """Get a new access token using the refresh token.

        Raises:
            RefreshFailed: If the grant fails for any reason
        """
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            error_cls=RefreshFailed,
        )

    async def _post_token(
        self, data: dict[str, str], error_cls: type[TokenGrantError]
    ) -> TokenDictionary:
        grant_type = data["grant_type"]
        try:
            response = await self._send(data)
            response.raise_for_status()
            return TokenDictionary.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Token grant '{grant_type}' failed: HTTP {e.response.status_code}",
                extra={"response_text": e.response.text[:200]},
            )
            raise error_cls(
                f"Token grant '{grant_type}' failed: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            logger.error(f"Token grant '{grant_type}' network error: {e}")
            raise error_cls(f"Token grant '{grant_type}' network error: {e}") from e
        except (ValueError, ValidationError) as e:
            logger.error(f"Token grant '{grant_type}' returned an unusable body: {e}")
            raise error_cls(f"Token grant '{grant_type}' response incomplete") from e

    async def _send(self, data: dict[str, str]) -> httpx.Response:
        kwargs: dict[str, Any] = {
            "data": data,
            "auth": httpx.BasicAuth(self.app_key, self._app_secret),
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
        }
        if self._http_client is not None:
            return await self._http_client.post(self.token_endpoint, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.token_endpoint, **kwargs)
