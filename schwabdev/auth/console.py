"""Interactive reauthorization for terminal sessions.

Usage:
    client = SchwabClient(settings, reauthorize=lambda: terminal_reauthorizer(client.tokens))
"""

import asyncio
import logging
import webbrowser

from schwabdev.auth.token_manager import TokenManager
from schwabdev.exceptions import TokenGrantError

logger = logging.getLogger(__name__)

PASTE_PROMPT = "After authorizing, wait for it to load (<1min) and paste the WHOLE url here: "


async def terminal_reauthorizer(tokens: TokenManager, open_browser: bool = True) -> None:
    """
    Walk the user through the consent page and store the resulting tokens.

    Prints the authorization URL (and opens it in the default browser), then
    reads the redirected URL from stdin in a worker thread so the event loop
    keeps running.

    Raises:
        ValueError: If the pasted URL has no authorization code
        TokenGrantError: If the code could not be exchanged for tokens
    """
    auth_url = tokens.authorization_url()
    print("Please authorize this program to access your schwab account.")
    print(f"Click to authenticate: {auth_url}")
    if open_browser:
        print("Opening browser...")
        await asyncio.to_thread(webbrowser.open, auth_url)

    response_url = await asyncio.to_thread(input, PASTE_PROMPT)
    print("Thank you! Validating code...")

    try:
        await tokens.complete_authorization_from_url(response_url)
    except TokenGrantError:
        logger.error(
            "Could not get new refresh and access tokens, check that the app status is "
            "'Ready For Use', the app key and secret are valid and the whole url was "
            "pasted within 30 seconds"
        )
        raise
    print("Refresh and Access tokens updated")
