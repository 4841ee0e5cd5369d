"""
Token lifecycle management.

The TokenManager owns the in-memory access/refresh/id tokens, mediates every
read and write of the credential record and decides when tokens must be
renewed:

- refresh token older than (refresh timeout - 1 day): full reauthorization
  through the injected reauthorization handler (up to 3 attempts)
- access token older than 1 day or (access timeout - 61 s): refresh grant
  (up to 3 attempts), falling back to one reauthorization
- otherwise nothing happens and no network call is made

Refreshes are single-flight: callers arriving while one is in progress await
the same task and share its outcome.

Usage:
    tokens = TokenManager(store, oauth, reauthorize=handler)
    await tokens.initialize()
    await tokens.ensure_fresh()
    headers = {"Authorization": f"Bearer {tokens.access_token}"}
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from schwabdev import metrics
from schwabdev.auth.credential_store import CredentialStore
from schwabdev.auth.oauth import OAuthTokenClient
from schwabdev.auth.types import TokenDictionary, TokenState, TokenStatus
from schwabdev.exceptions import ReauthFailed, RefreshFailed, SchwabError

logger = logging.getLogger(__name__)

Reauthorizer = Callable[[], Awaitable[None]]

REFRESH_ATTEMPTS = 3
REAUTH_ATTEMPTS = 3
ACCESS_REFRESH_MARGIN = timedelta(seconds=61)
ACCESS_MAX_AGE = timedelta(days=1)
REFRESH_REAUTH_MARGIN = timedelta(days=1)


class TokenManager:
    """
    Owns Schwab OAuth tokens and keeps them fresh.

    The reauthorization handler is a zero-argument coroutine function that
    obtains user consent and hands the resulting code to
    ``complete_authorization()`` or ``complete_authorization_from_url()``.
    It is considered successful only if it actually produced new tokens.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth: OAuthTokenClient,
        reauthorize: Reauthorizer,
        access_token_timeout: int = 1800,
        refresh_token_timeout_days: int = 7,
        auto_refresh_interval: float = 60.0,
        time_fn: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the token manager.

        Args:
            store: Credential record storage
            oauth: Token grant client
            reauthorize: Interactive reauthorization handler
            access_token_timeout: Access token lifetime in seconds
            refresh_token_timeout_days: Refresh token lifetime in days
            auto_refresh_interval: Seconds between background freshness checks
            time_fn: Clock returning an aware UTC datetime (for tests)
        """
        self._store = store
        self._oauth = oauth
        self._reauthorize = reauthorize
        self.access_token_timeout = timedelta(seconds=access_token_timeout)
        self.refresh_token_timeout = timedelta(days=refresh_token_timeout_days)
        self.auto_refresh_interval = auto_refresh_interval
        self._now = time_fn or (lambda: datetime.now(UTC))

        self.state = TokenState()
        self.status = TokenStatus.UNINITIALIZED

        self._ready = asyncio.Event()
        self._initializing = False
        self._inflight: asyncio.Task[bool] | None = None
        self._auto_refresh_task: asyncio.Task[None] | None = None
        # Bumped by every completed authorization-code exchange
        self._authorizations = 0

    # ------------------------------------------------------------------
    # Token accessors
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self.state.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.state.refresh_token

    @property
    def id_token(self) -> str | None:
        return self.state.id_token

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_until_ready(self) -> None:
        """Block until the current initialization attempt has finished."""
        await self._ready.wait()

    def authorization_url(self) -> str:
        return self._oauth.authorization_url()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load stored credentials, or run the reauthorization handler if there
        are none.

        Never raises; failures are logged and leave the manager in FAILED.
        The readiness gate is opened when this returns.
        """
        self._ready.clear()
        self._initializing = True
        try:
            record = self._store.load()
            if record.is_complete:
                self.state = TokenState.from_record(record)
                self.status = TokenStatus.VALID
                logger.info("Loaded tokens from '%s'", self._store.path)
                self._log_token_ages()
                return

            logger.warning("No usable credentials found, starting authorization")
            authorized = await self._single_flight(self._initial_authorization)
            if not authorized:
                logger.error("Initial authorization did not produce tokens")
        finally:
            self._initializing = False
            self._ready.set()

    async def ensure_fresh(self) -> None:
        """
        Make sure the access token is usable, renewing tokens if needed.

        Raises:
            ReauthFailed: If neither a refresh nor a reauthorization succeeded
        """
        if self._initializing:
            await self._ready.wait()

        if self._inflight is not None:
            if not await asyncio.shield(self._inflight):
                raise ReauthFailed("Token renewal in progress failed")
            return

        now = self._now()
        refresh_age = self.state.refresh_age(now)
        access_age = self.state.access_age(now)

        if refresh_age is None or refresh_age >= self.refresh_token_timeout - REFRESH_REAUTH_MARGIN:
            logger.warning("Refresh token expired or about to expire, reauthorizing")
            if not await self._single_flight(self._full_reauthorization):
                raise ReauthFailed(f"Reauthorization failed after {REAUTH_ATTEMPTS} attempts")
        elif access_age is None or (
            access_age >= ACCESS_MAX_AGE
            or access_age >= self.access_token_timeout - ACCESS_REFRESH_MARGIN
        ):
            logger.info("Access token expired or about to expire, refreshing")
            if not await self._single_flight(self._refresh_access_token):
                raise ReauthFailed("Access token could not be refreshed")

    async def force_refresh(self) -> bool:
        """Run the access token refresh path regardless of token age."""
        return await self._single_flight(self._refresh_access_token)

    def clear(self) -> None:
        """Null all tokens in memory and in the credential record."""
        self.state.clear()
        self.status = TokenStatus.NEEDS_REAUTH
        try:
            self._store.clear()
        except OSError as e:
            logger.error(f"Failed to clear token file '{self._store.path}': {e}")
        logger.warning("Tokens cleared")

    async def recover_from_unauthorized(self, rejected_token: str | None) -> bool:
        """
        Handle an HTTP 401 for a request sent with ``rejected_token``.

        Joins a renewal that is already running. Tokens are only cleared if
        the rejected token is still the current one; a 401 for a token that
        has since been replaced needs no action.

        Returns:
            True if a usable access token is available afterwards
        """
        if self._inflight is not None:
            return await asyncio.shield(self._inflight)
        if self.state.access_token is not None and self.state.access_token != rejected_token:
            logger.info("Rejected token was already replaced, retrying with current token")
            return True
        logger.warning("Access token rejected, clearing tokens and reauthorizing")
        self.clear()
        return await self.force_refresh()

    # ------------------------------------------------------------------
    # Authorization code grant
    # ------------------------------------------------------------------

    async def complete_authorization(self, code: str) -> None:
        """
        Exchange an authorization code for tokens and persist them.

        Raises:
            TokenGrantError: If the token endpoint rejects the code
        """
        tokens = await self._oauth.exchange_code(code)
        now = self._now()
        self._adopt(tokens, access_issued_at=now, refresh_issued_at=now)
        self._authorizations += 1
        logger.info("Authorization complete, new tokens stored")
        self._log_token_ages()

    async def complete_authorization_from_url(self, response_url: str) -> None:
        """Complete authorization with the URL the browser was redirected to.

        Raises:
            ValueError: If the URL carries no authorization code
            TokenGrantError: If the token endpoint rejects the code
        """
        await self.complete_authorization(self._oauth.parse_authorization_code(response_url))

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def start_auto_refresh(self, interval: float | None = None) -> None:
        """Start a background task calling ensure_fresh() periodically."""
        if self._auto_refresh_task is not None and not self._auto_refresh_task.done():
            return
        self._auto_refresh_task = asyncio.create_task(
            self._auto_refresh_loop(interval or self.auto_refresh_interval),
            name="schwab-token-refresh",
        )

    async def stop_auto_refresh(self) -> None:
        task, self._auto_refresh_task = self._auto_refresh_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _auto_refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.ensure_fresh()
            except SchwabError as e:
                logger.error(f"Background token check failed: {e}")
            except Exception:
                logger.exception("Background token check raised")

    # ------------------------------------------------------------------
    # Renewal paths
    # ------------------------------------------------------------------

    async def _single_flight(self, operation: Callable[[], Awaitable[bool]]) -> bool:
        if self._inflight is None:
            task = asyncio.create_task(operation())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: "asyncio.Task[bool]") -> None:
        if self._inflight is task:
            self._inflight = None

    async def _initial_authorization(self) -> bool:
        self.status = TokenStatus.NEEDS_REAUTH
        before = self._authorizations
        if await self._run_reauthorizer() and self._authorizations > before:
            metrics.token_reauth_total.labels(result="success").inc()
            return True
        metrics.token_reauth_total.labels(result="failure").inc()
        self.status = TokenStatus.FAILED
        return False

    async def _full_reauthorization(self) -> bool:
        self.status = TokenStatus.NEEDS_REAUTH
        for attempt in range(1, REAUTH_ATTEMPTS + 1):
            before = self._authorizations
            if await self._run_reauthorizer() and self._authorizations > before:
                metrics.token_reauth_total.labels(result="success").inc()
                return True
            metrics.token_reauth_total.labels(result="failure").inc()
            logger.warning(f"Reauthorization attempt {attempt}/{REAUTH_ATTEMPTS} failed")
        self.status = TokenStatus.FAILED
        logger.error(f"Reauthorization failed after {REAUTH_ATTEMPTS} attempts")
        return False

    async def _refresh_access_token(self) -> bool:
        self.status = TokenStatus.REFRESHING
        previous_token = self.state.access_token
        refresh_token = self.state.refresh_token

        if refresh_token:
            try:
                tokens = await self._refresh_with_retries(refresh_token)
            except RefreshFailed as e:
                metrics.token_refresh_total.labels(result="failure").inc()
                logger.error(
                    f"Access token refresh failed after {REFRESH_ATTEMPTS} attempts: {e}"
                )
            else:
                metrics.token_refresh_total.labels(result="success").inc()
                now = self._now()
                self._adopt(
                    tokens,
                    access_issued_at=now,
                    refresh_issued_at=self.state.refresh_issued_at or now,
                )
                logger.info("Access token refreshed")
                return True
        else:
            logger.warning("No refresh token available")

        logger.warning("Falling back to reauthorization")
        before = self._authorizations
        completed = await self._run_reauthorizer()
        token = self.state.access_token
        if completed and self._authorizations > before and token and token != previous_token:
            metrics.token_reauth_total.labels(result="success").inc()
            return True
        metrics.token_reauth_total.labels(result="failure").inc()
        self.status = TokenStatus.FAILED
        return False

    async def _refresh_with_retries(self, refresh_token: str) -> TokenDictionary:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(REFRESH_ATTEMPTS),
            retry=retry_if_exception_type(RefreshFailed),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self._oauth.refresh(refresh_token)
        raise RefreshFailed("Refresh attempts exhausted")  # pragma: no cover

    async def _run_reauthorizer(self) -> bool:
        try:
            await self._reauthorize()
        except Exception as e:
            # Handler is host-supplied; any failure counts as a failed attempt
            logger.error(f"Reauthorization handler failed: {e}", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _adopt(
        self, tokens: TokenDictionary, access_issued_at: datetime, refresh_issued_at: datetime
    ) -> None:
        self.state.adopt(tokens, access_issued_at, refresh_issued_at)
        self.status = TokenStatus.VALID
        try:
            self._store.save(self.state.to_record())
        except OSError as e:
            logger.error(f"Failed to write token file '{self._store.path}': {e}")

    def _log_token_ages(self) -> None:
        now = self._now()
        access_age = self.state.access_age(now)
        refresh_age = self.state.refresh_age(now)
        if access_age is None or refresh_age is None:
            return
        logger.info(
            "Token ages",
            extra={
                "access_token_issued": self.state.access_issued_at.isoformat()
                if self.state.access_issued_at
                else None,
                "access_token_expires_in_seconds": int(
                    (self.access_token_timeout - access_age).total_seconds()
                ),
                "refresh_token_expires_in_seconds": int(
                    (self.refresh_token_timeout - refresh_age).total_seconds()
                ),
            },
        )
