"""
Shortcut builders for the Schwab streamer services.

Each builder produces a request frame for one service through
``build_request()``. ``keys`` and ``fields`` accept a comma separated string
or a list.

Example:
    >>> request = await stream.level_one_equities(["AMD", "INTC"], "0,1,2,3")
    >>> await stream.send(request)
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

Keys = str | Iterable[Any]


def list_to_string(value: Keys) -> str:
    """``[1, "B", 3]`` -> ``"1,B,3"``; strings pass through."""
    if isinstance(value, str):
        return value
    return ",".join(str(item) for item in value)


class StreamServices(ABC):
    """Service shortcuts mixed into StreamSession."""

    @abstractmethod
    async def build_request(
        self, service: str, command: str, parameters: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Build one request frame for ``service``."""

    async def _subscription(
        self, service: str, keys: Keys, fields: Keys, command: str
    ) -> dict[str, Any]:
        return await self.build_request(
            service,
            command,
            {"keys": list_to_string(keys), "fields": list_to_string(fields)},
        )

    async def level_one_equities(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("LEVELONE_EQUITIES", keys, fields, command)

    async def level_one_options(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("LEVELONE_OPTIONS", keys, fields, command)

    async def level_one_futures(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("LEVELONE_FUTURES", keys, fields, command)

    async def level_one_futures_options(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("LEVELONE_FUTURES_OPTIONS", keys, fields, command)

    async def level_one_forex(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("LEVELONE_FOREX", keys, fields, command)

    async def nyse_book(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("NYSE_BOOK", keys, fields, command)

    async def nasdaq_book(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("NASDAQ_BOOK", keys, fields, command)

    async def options_book(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("OPTIONS_BOOK", keys, fields, command)

    async def chart_equity(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("CHART_EQUITY", keys, fields, command)

    async def chart_futures(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("CHART_FUTURES", keys, fields, command)

    async def screener_equity(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("SCREENER_EQUITY", keys, fields, command)

    async def screener_option(self, keys: Keys, fields: Keys, command: str = "ADD"):
        return await self._subscription("SCREENER_OPTION", keys, fields, command)

    async def account_activity(
        self,
        keys: Keys = "Account Activity",
        fields: Keys = "0,1,2,3",
        command: str = "SUBS",
    ):
        # Only SUBS and UNSUBS are accepted for this service
        return await self._subscription("ACCT_ACTIVITY", keys, fields, command)
