"""
Authenticated request executor.

Every REST call goes through ``RequestExecutor.request()``, which:
1. awaits ``TokenManager.ensure_fresh()``
2. sends the call with ``Authorization: Bearer <access token>``
3. on HTTP 401 asks the token manager to recover and retries exactly once
4. maps the response to parsed JSON (or ``{}`` for empty-body success codes)

REST calls are not retried for any other reason.
"""

import logging
from typing import Any

import httpx

from schwabdev import metrics
from schwabdev.auth.token_manager import TokenManager
from schwabdev.common.logging import CORRELATION_ID_HEADER, CorrelationContext
from schwabdev.exceptions import ResponseDecodeError, TransportError, Unauthorized

logger = logging.getLogger(__name__)

# (method, status) pairs that carry no body
EMPTY_BODY_STATUSES = {
    ("POST", 201),
    ("PUT", 201),
    ("DELETE", 200),
}


def is_error_response(data: Any) -> bool:
    """
    Whether a parsed response body is one of the API's error shapes.

    Schwab returns either ``{"error": ..., "error_description": ...}`` or
    ``{"message": ..., "errors": [...]}``.
    """
    if not isinstance(data, dict):
        return False
    return "error" in data or ("message" in data and "errors" in data)


class RequestExecutor:
    """
    Sends authenticated requests to the Schwab API.

    Example:
        executor = RequestExecutor(tokens, base_url="https://api.schwabapi.com")
        accounts = await executor.request("/trader/v1/accounts/accountNumbers")
        await executor.aclose()
    """

    def __init__(
        self,
        tokens: TokenManager,
        base_url: str = "https://api.schwabapi.com",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the executor.

        Args:
            tokens: Token manager providing fresh access tokens
            base_url: API host
            timeout: Request timeout in seconds
            http_client: Shared client (created here if None)
        """
        self.tokens = tokens
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Issue an authenticated request and return the parsed JSON body.

        Args:
            endpoint: Path relative to the API host, e.g. ``/marketdata/v1/quotes``
            method: HTTP method
            body: JSON-serializable request body
            params: Query parameters

        Returns:
            Parsed JSON, or ``{}`` for responses that carry no body

        Raises:
            ReauthFailed: If tokens could not be made fresh
            Unauthorized: If the request is rejected with 401 after one recovery
            TransportError: On timeouts and connection failures
            ResponseDecodeError: If a successful response is not valid JSON
        """
        method = method.upper()
        with CorrelationContext() as correl_id:
            await self.tokens.ensure_fresh()

            token = self.tokens.access_token
            response = await self._send(endpoint, method, body, params, token, correl_id)

            if response.status_code == 401:
                logger.warning(f"{method} {endpoint} unauthorized, recovering tokens")
                if not await self.tokens.recover_from_unauthorized(token):
                    raise Unauthorized(
                        f"{method} {endpoint} unauthorized and token recovery failed",
                        endpoint=endpoint,
                    )
                response = await self._send(
                    endpoint, method, body, params, self.tokens.access_token, correl_id
                )
                if response.status_code == 401:
                    raise Unauthorized(f"{method} {endpoint} unauthorized after retry", endpoint=endpoint)

            return self._parse(response, endpoint, method)

    async def _send(
        self,
        endpoint: str,
        method: str,
        body: Any,
        params: dict[str, Any] | None,
        token: str | None,
        correl_id: str,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            CORRELATION_ID_HEADER: correl_id,
        }
        try:
            response = await self.client.request(
                method,
                endpoint,
                params=params,
                json=body,
                headers=headers,
            )
        except httpx.TransportError as e:
            metrics.rest_requests_total.labels(method=method, status="transport_error").inc()
            logger.error(f"{method} {endpoint} failed: {e}")
            raise TransportError(f"{method} {endpoint} failed: {e}") from e

        metrics.rest_requests_total.labels(method=method, status=str(response.status_code)).inc()
        logger.debug(f"{method} {endpoint} -> {response.status_code}")
        return response

    @staticmethod
    def _parse(response: httpx.Response, endpoint: str, method: str) -> Any:
        status = response.status_code
        if status == 204 or (method, status) in EMPTY_BODY_STATUSES:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ResponseDecodeError(
                f"{method} {endpoint} returned invalid JSON (HTTP {status})",
                status_code=status,
            ) from e
