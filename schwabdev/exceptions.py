"""
Exception hierarchy for the Schwab client.

Token lifecycle, REST and streaming errors share a common base so callers can
catch everything raised by this package with a single ``except SchwabError``.
"""


class SchwabError(Exception):
    """
    Base exception for all Schwab client errors.

    Example:
        >>> try:
        ...     accounts = await client.account_linked()
        ... except SchwabError as e:
        ...     logger.error(f"Schwab call failed: {e}")
    """

    pass


class CredentialMissing(SchwabError):
    """
    Raised at construction time when the app key, app secret, reauthorization
    handler or tokens file is missing or malformed.

    This is a configuration error and is never retried.
    """

    pass


class RecordCorrupt(SchwabError):
    """
    Raised by the credential store when the tokens file exists but cannot be
    decoded into a credential record.

    The store logs it and reports "no credentials"; it does not escape
    ``CredentialStore.load()``.
    """

    pass


class TokenGrantError(SchwabError):
    """
    Raised when the OAuth token endpoint rejects a grant request.

    Attributes:
        status_code: HTTP status returned by the token endpoint
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RefreshFailed(TokenGrantError):
    """Raised when a refresh_token grant attempt fails."""

    pass


class ReauthFailed(SchwabError):
    """
    Raised by ``TokenManager.ensure_fresh()`` when neither the refresh grant
    nor the interactive reauthorization produced usable credentials.

    Not terminal: the next readiness check tries again.
    """

    pass


class RequestError(SchwabError):
    """Base class for failures of an authenticated REST call."""

    pass


class Unauthorized(RequestError):
    """
    Raised when a request is rejected with HTTP 401 after one
    clear/refresh/retry cycle.

    Attributes:
        status_code: Always 401
        endpoint: Endpoint path of the rejected request
    """

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        super().__init__(message)
        self.status_code = 401
        self.endpoint = endpoint


class TransportError(RequestError):
    """
    Raised when the HTTP transport fails (timeout, DNS, connection reset).

    Surfaced immediately; REST calls are never retried automatically.
    """

    pass


class ResponseDecodeError(RequestError):
    """Raised when a successful response body is not valid JSON."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamError(SchwabError):
    """Base class for streaming session conditions."""

    pass


class StreamUnrecoverable(StreamError):
    """
    The socket closed abnormally before the session had been up for the
    minimum uptime (rejected login or misconfiguration).

    The session logs it and ends; it is never raised out of the session.
    """

    pass


class StreamTransientDrop(StreamError):
    """
    The socket closed abnormally after the minimum uptime; a reconnect is
    scheduled. Logged, never raised out of the session.
    """

    pass
