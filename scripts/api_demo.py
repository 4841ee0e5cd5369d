#!/usr/bin/env python3
"""Walk through the REST endpoints against a live Schwab account.

Reads SCHWAB_APP_KEY, SCHWAB_APP_SECRET and SCHWAB_CALLBACK_URL from the
environment or a .env file. On first run the consent page is opened and the
redirected URL must be pasted back into the terminal.

Exit Codes:
    0: Success
    1: API error
    2: Configuration error (missing or malformed credentials)

Usage:
    python scripts/api_demo.py
    python scripts/api_demo.py --symbols AAPL,AMD --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime, timedelta
from typing import Any

from dotenv import load_dotenv

from schwabdev import SchwabClient, SchwabError, get_settings, is_error_response, terminal_reauthorizer
from schwabdev.common.logging import configure_logging
from schwabdev.exceptions import CredentialMissing

EXIT_SUCCESS = 0
EXIT_API_ERROR = 1
EXIT_CONFIG_ERROR = 2


def show(title: str, data: Any) -> None:
    print(f"|\n|{title}\n|{json.dumps(data)}")


async def run(symbols: list[str]) -> int:
    settings = get_settings()
    try:
        client = SchwabClient(settings, reauthorize=lambda: terminal_reauthorizer(client.tokens))
    except CredentialMissing as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    async with client:
        print("\n\nAccounts and Trading - Accounts.")
        linked = await client.account_linked()
        if not linked or is_error_response(linked):
            # App might not be "Ready For Use"
            print("Could not get linked accounts.", file=sys.stderr)
            print(
                'Please make sure that your app status is "Ready For Use" and that the '
                "app key and app secret are valid.",
                file=sys.stderr,
            )
            print(json.dumps(linked), file=sys.stderr)
            return EXIT_API_ERROR

        show("client.account_linked()", linked)
        account_hash = linked[0]["hashValue"]
        show("client.account_details_all()", await client.account_details_all())
        show(
            "client.account_details(account_hash, 'positions')",
            await client.account_details(account_hash, "positions"),
        )

        print("\n\nAccounts and Trading - Orders.")
        now = datetime.now(UTC)
        past_30_days = now - timedelta(days=30)
        show(
            "client.account_orders(account_hash, past_30_days, now)",
            await client.account_orders(account_hash, past_30_days, now),
        )
        show(
            "client.account_orders_all(past_30_days, now)",
            await client.account_orders_all(past_30_days, now),
        )

        print("\n\nAccounts and Trading - Transactions.")
        show(
            "client.transactions(account_hash, past_30_days, now, 'TRADE')",
            await client.transactions(account_hash, past_30_days, now, "TRADE"),
        )

        print("\n\nAccounts and Trading - UserPreference.")
        show("client.preferences()", await client.preferences())

        print("\n\nMarket Data - Quotes.")
        show(f"client.quotes({symbols})", await client.quotes(symbols))
        show(f"client.quote('{symbols[0]}')", await client.quote(symbols[0]))

        print("\n\nMarket Data - Options Expiration Chain.")
        show(
            f"client.option_expiration_chain('{symbols[0]}')",
            await client.option_expiration_chain(symbols[0]),
        )

        print("\n\nMarket Data - PriceHistory.")
        show(
            f"client.price_history('{symbols[0]}', 'year')",
            await client.price_history(symbols[0], "year"),
        )

        print("\n\nMarket Data - Movers.")
        show("client.movers('$DJI')", await client.movers("$DJI"))

        print("\n\nMarket Data - MarketHours.")
        show(
            "client.market_hours(['equity', 'option'])",
            await client.market_hours(["equity", "option"]),
        )
        show("client.market_hour('equity')", await client.market_hour("equity"))

        print("\n\nMarket Data - Instruments.")
        show(
            f"client.instruments('{symbols[0]}', 'fundamental')",
            await client.instruments(symbols[0], "fundamental"),
        )
        show("client.instrument_cusip('037833100')", await client.instrument_cusip("037833100"))

    return EXIT_SUCCESS


def main() -> int:
    parser = argparse.ArgumentParser(description="Schwab REST API demo")
    parser.add_argument("--symbols", default="AAPL,AMD", help="Comma separated symbols")
    parser.add_argument("--env-file", default=".env", help="dotenv file with SCHWAB_* settings")
    parser.add_argument("--log-level", default=None, help="Overrides SCHWAB_LOG_LEVEL")
    args = parser.parse_args()

    load_dotenv(args.env_file)
    configure_logging(app_name="api_demo", log_level=args.log_level or get_settings().log_level)

    symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
    if not symbols:
        print("Error: No symbols provided", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        return asyncio.run(run(symbols))
    except SchwabError as e:
        print(f"Schwab API error: {e}", file=sys.stderr)
        return EXIT_API_ERROR


if __name__ == "__main__":
    sys.exit(main())
