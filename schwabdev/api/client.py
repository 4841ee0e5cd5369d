"""
Schwab API client.

Wires the credential store, token manager, request executor and streaming
session together and exposes the Trader and Market Data endpoints. Responses
are returned as parsed JSON.

Example:
    settings = get_settings()
    client = SchwabClient(settings, reauthorize=lambda: terminal_reauthorizer(client.tokens))
    async with client:
        accounts = await client.account_linked()
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from schwabdev.api.executor import RequestExecutor
from schwabdev.api.params import TimeFormat, TimeValue, clean_params, format_list, time_convert
from schwabdev.auth.credential_store import CredentialStore
from schwabdev.auth.oauth import OAuthTokenClient
from schwabdev.auth.token_manager import Reauthorizer, TokenManager
from schwabdev.config import APP_KEY_LENGTH, APP_SECRET_LENGTH, SchwabSettings
from schwabdev.exceptions import CredentialMissing
from schwabdev.streaming.session import StreamSession
from schwabdev.streaming.types import ReconnectPolicy

logger = logging.getLogger(__name__)


def validate_credentials(settings: SchwabSettings, reauthorize: Reauthorizer | None) -> None:
    """
    Check app credentials before anything touches the network.

    Raises:
        CredentialMissing: If a credential is absent or has the wrong length
    """
    app_key = settings.app_key
    app_secret = settings.app_secret.get_secret_value()
    if not app_key or not app_secret:
        raise CredentialMissing("app_key and app_secret cannot be empty")
    if len(app_key) != APP_KEY_LENGTH or len(app_secret) != APP_SECRET_LENGTH:
        raise CredentialMissing(
            f"app_key must be {APP_KEY_LENGTH} characters and "
            f"app_secret {APP_SECRET_LENGTH} characters"
        )
    if not settings.callback_url.startswith("https"):
        raise CredentialMissing("callback_url must be https")
    if not settings.tokens_file:
        raise CredentialMissing("tokens_file cannot be empty")
    if reauthorize is None or not callable(reauthorize):
        raise CredentialMissing("A reauthorization handler is required")


class SchwabClient:
    """
    Client for the Schwab Trader and Market Data APIs.

    Attributes:
        tokens: Token lifecycle manager
        executor: Authenticated request executor
        stream: Streaming session (not started)
    """

    def __init__(
        self,
        settings: SchwabSettings,
        reauthorize: Reauthorizer,
        http_client: httpx.AsyncClient | None = None,
        auto_refresh: bool = True,
    ):
        """
        Initialize the client. No network call is made until ``initialize()``.

        Args:
            settings: Client settings
            reauthorize: Interactive reauthorization handler
            http_client: Shared HTTP client (created here if None)
            auto_refresh: Check tokens in the background every
                ``settings.auto_refresh_interval`` seconds

        Raises:
            CredentialMissing: If credentials are missing or malformed
        """
        validate_credentials(settings, reauthorize)
        self.settings = settings
        self.auto_refresh = auto_refresh

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=settings.base_api_url, timeout=settings.timeout
        )
        oauth = OAuthTokenClient(
            app_key=settings.app_key,
            app_secret=settings.app_secret.get_secret_value(),
            callback_url=settings.callback_url,
            base_url=settings.base_api_url,
            timeout=settings.timeout,
            http_client=self.http_client,
        )
        self.tokens = TokenManager(
            store=CredentialStore(settings.tokens_file),
            oauth=oauth,
            reauthorize=reauthorize,
            access_token_timeout=settings.access_token_timeout,
            refresh_token_timeout_days=settings.refresh_token_timeout_days,
            auto_refresh_interval=settings.auto_refresh_interval,
        )
        self.executor = RequestExecutor(
            self.tokens, base_url=settings.base_api_url, http_client=self.http_client
        )
        self.stream = StreamSession(
            self.tokens,
            fetch_preferences=self.preferences,
            policy=ReconnectPolicy.from_settings(settings),
        )

    async def initialize(self) -> None:
        """Load or obtain tokens, then start background token checks."""
        await self.tokens.initialize()
        if self.auto_refresh:
            self.tokens.start_auto_refresh()

    async def aclose(self) -> None:
        await self.stream.stop_automatic()
        await self.stream.stop()
        await self.tokens.stop_auto_refresh()
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "SchwabClient":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _get(self, endpoint: str, **params: Any) -> Any:
        return await self.executor.request(endpoint, params=clean_params(params))

    # ------------------------------------------------------------------
    # Accounts and trading
    # ------------------------------------------------------------------

    async def account_linked(self) -> Any:
        """Account numbers in plain text and their hashed values."""
        return await self._get("/trader/v1/accounts/accountNumbers")

    async def account_details_all(self, fields: str | None = None) -> Any:
        """Balances of all linked accounts; ``fields="positions"`` adds positions."""
        return await self._get("/trader/v1/accounts/", fields=fields)

    async def account_details(self, account_hash: str, fields: str | None = None) -> Any:
        return await self._get(f"/trader/v1/accounts/{account_hash}", fields=fields)

    async def account_orders(
        self,
        account_hash: str,
        from_entered_time: TimeValue,
        to_entered_time: TimeValue,
        max_results: int | None = None,
        status: str | None = None,
    ) -> Any:
        return await self._get(
            f"/trader/v1/accounts/{account_hash}/orders",
            fromEnteredTime=time_convert(from_entered_time, TimeFormat.ISO_8601),
            toEnteredTime=time_convert(to_entered_time, TimeFormat.ISO_8601),
            maxResults=max_results,
            status=status,
        )

    async def order_place(self, account_hash: str, order: dict[str, Any]) -> Any:
        """Place an order; a 201 response resolves to ``{}``."""
        return await self.executor.request(
            f"/trader/v1/accounts/{account_hash}/orders", method="POST", body=order
        )

    async def order_details(self, account_hash: str, order_id: str | int) -> Any:
        return await self._get(f"/trader/v1/accounts/{account_hash}/orders/{order_id}")

    async def order_cancel(self, account_hash: str, order_id: str | int) -> Any:
        return await self.executor.request(
            f"/trader/v1/accounts/{account_hash}/orders/{order_id}", method="DELETE"
        )

    async def order_replace(
        self, account_hash: str, order_id: str | int, order: dict[str, Any]
    ) -> Any:
        return await self.executor.request(
            f"/trader/v1/accounts/{account_hash}/orders/{order_id}", method="PUT", body=order
        )

    async def account_orders_all(
        self,
        from_entered_time: TimeValue,
        to_entered_time: TimeValue,
        max_results: int | None = None,
        status: str | None = None,
    ) -> Any:
        """Orders across all linked accounts."""
        return await self._get(
            "/trader/v1/orders",
            maxResults=max_results,
            fromEnteredTime=time_convert(from_entered_time, TimeFormat.ISO_8601),
            toEnteredTime=time_convert(to_entered_time, TimeFormat.ISO_8601),
            status=status,
        )

    async def transactions(
        self,
        account_hash: str,
        start_date: TimeValue,
        end_date: TimeValue,
        types: str,
        symbol: str | None = None,
    ) -> Any:
        return await self._get(
            f"/trader/v1/accounts/{account_hash}/transactions",
            accountNumber=account_hash,
            startDate=time_convert(start_date, TimeFormat.ISO_8601),
            endDate=time_convert(end_date, TimeFormat.ISO_8601),
            symbol=symbol,
            types=types,
        )

    async def transaction_details(self, account_hash: str, transaction_id: str | int) -> Any:
        return await self._get(
            f"/trader/v1/accounts/{account_hash}/transactions/{transaction_id}",
            accountNumber=account_hash,
            transactionId=transaction_id,
        )

    async def preferences(self) -> Any:
        """User preferences, including the streamer connection info."""
        return await self._get("/trader/v1/userPreference")

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def quotes(
        self,
        symbols: list[str] | str | None = None,
        fields: list[str] | str | None = None,
        indicative: bool = False,
    ) -> Any:
        """Quotes for several symbols, e.g. ``["AMD", "INTC"]`` or ``"AMD,INTC"``."""
        return await self._get(
            "/marketdata/v1/quotes",
            symbols=format_list(symbols),
            fields=format_list(fields),
            indicative=indicative,
        )

    async def quote(self, symbol_id: str, fields: list[str] | str | None = None) -> Any:
        return await self._get(
            f"/marketdata/v1/{quote(symbol_id, safe='')}/quotes", fields=format_list(fields)
        )

    async def option_chains(
        self,
        symbol: str,
        contract_type: str | None = None,
        strike_count: int | None = None,
        include_underlying_quote: bool | None = None,
        strategy: str | None = None,
        interval: str | None = None,
        strike: float | None = None,
        range: str | None = None,
        from_date: TimeValue | None = None,
        to_date: TimeValue | None = None,
        volatility: float | None = None,
        underlying_price: float | None = None,
        interest_rate: float | None = None,
        days_to_expiration: int | None = None,
        exp_month: str | None = None,
        option_type: str | None = None,
        entitlement: str | None = None,
    ) -> Any:
        """Option chain for a symbol."""
        return await self._get(
            "/marketdata/v1/chains",
            symbol=symbol,
            contractType=contract_type,
            strikeCount=strike_count,
            includeUnderlyingQuote=include_underlying_quote,
            strategy=strategy,
            interval=interval,
            strike=strike,
            range=range,
            fromDate=time_convert(from_date, TimeFormat.DATE),
            toDate=time_convert(to_date, TimeFormat.DATE),
            volatility=volatility,
            underlyingPrice=underlying_price,
            interestRate=interest_rate,
            daysToExpiration=days_to_expiration,
            expMonth=exp_month,
            optionType=option_type,
            entitlement=entitlement,
        )

    async def option_expiration_chain(self, symbol: str) -> Any:
        return await self._get("/marketdata/v1/expirationchain", symbol=symbol)

    async def price_history(
        self,
        symbol: str,
        period_type: str | None = None,
        period: int | None = None,
        frequency_type: str | None = None,
        frequency: int | None = None,
        start_date: TimeValue | None = None,
        end_date: TimeValue | None = None,
        need_extended_hours_data: bool | None = None,
        need_previous_close: bool | None = None,
    ) -> Any:
        """Candles for a symbol; dates are sent as epoch milliseconds."""
        return await self._get(
            "/marketdata/v1/pricehistory",
            symbol=symbol,
            periodType=period_type,
            period=period,
            frequencyType=frequency_type,
            frequency=frequency,
            startDate=time_convert(start_date, TimeFormat.EPOCH_MS),
            endDate=time_convert(end_date, TimeFormat.EPOCH_MS),
            needExtendedHoursData=need_extended_hours_data,
            needPreviousClose=need_previous_close,
        )

    async def movers(self, symbol: str, sort: str | None = None, frequency: int | None = None) -> Any:
        return await self._get(f"/marketdata/v1/movers/{symbol}", sort=sort, frequency=frequency)

    async def market_hours(
        self, symbols: list[str] | str, date: TimeValue | None = None
    ) -> Any:
        """Hours for markets such as ``equity``, ``option``, ``bond``, ``future``, ``forex``."""
        return await self._get(
            "/marketdata/v1/markets",
            markets=format_list(symbols),
            date=time_convert(date, TimeFormat.DATE),
        )

    async def market_hour(self, market_id: str, date: TimeValue | None = None) -> Any:
        return await self._get(
            f"/marketdata/v1/markets/{market_id}", date=time_convert(date, TimeFormat.DATE)
        )

    async def instruments(self, symbol: str, projection: str) -> Any:
        return await self._get("/marketdata/v1/instruments", symbol=symbol, projection=projection)

    async def instrument_cusip(self, cusip_id: str) -> Any:
        return await self._get(f"/marketdata/v1/instruments/{cusip_id}")
