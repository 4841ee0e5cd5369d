#!/usr/bin/env python3
"""Stream level one quotes for a minute.

Subscriptions sent before the stream is logged in are queued and delivered
once the login is acknowledged.

By default shortcut requests are ADD commands (symbols are appended to the
current subscription of a service). Use SUBS to overwrite, UNSUBS to remove
and VIEW to change the field list.

Usage:
    python scripts/stream_demo.py
    python scripts/stream_demo.py --equities AMD,INTC --futures /ES --seconds 120
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from dotenv import load_dotenv

from schwabdev import SchwabClient, SchwabError, get_settings, terminal_reauthorizer
from schwabdev.common.logging import configure_logging
from schwabdev.exceptions import CredentialMissing

EXIT_SUCCESS = 0
EXIT_API_ERROR = 1
EXIT_CONFIG_ERROR = 2


async def run(equities: str, futures: str, seconds: float) -> int:
    try:
        client = SchwabClient(get_settings(), reauthorize=lambda: terminal_reauthorizer(client.tokens))
    except CredentialMissing as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    async with client:
        stream = client.stream
        await stream.start(print)

        await stream.send(await stream.level_one_equities(equities, "0,1,2,3,4,5,6,7,8"))
        if futures:
            await stream.send(await stream.level_one_futures(futures, "0,1,2,3,4,5,6"))

        # Stop after a while since this is a demo
        await asyncio.sleep(seconds)
        await stream.stop()

    return EXIT_SUCCESS


def main() -> int:
    parser = argparse.ArgumentParser(description="Schwab streaming demo")
    parser.add_argument("--equities", default="AMD,INTC", help="Comma separated equity symbols")
    parser.add_argument("--futures", default="/ES", help="Comma separated futures symbols")
    parser.add_argument("--seconds", type=float, default=60.0, help="How long to stream")
    parser.add_argument("--env-file", default=".env", help="dotenv file with SCHWAB_* settings")
    parser.add_argument("--log-level", default=None, help="Overrides SCHWAB_LOG_LEVEL")
    args = parser.parse_args()

    load_dotenv(args.env_file)
    configure_logging(app_name="stream_demo", log_level=args.log_level or get_settings().log_level)

    try:
        return asyncio.run(run(args.equities, args.futures, args.seconds))
    except SchwabError as e:
        print(f"Schwab API error: {e}", file=sys.stderr)
        return EXIT_API_ERROR


if __name__ == "__main__":
    sys.exit(main())
