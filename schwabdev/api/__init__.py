"""REST access to the Schwab Trader and Market Data APIs."""

from schwabdev.api.client import SchwabClient, validate_credentials
from schwabdev.api.executor import RequestExecutor, is_error_response
from schwabdev.api.params import TimeFormat, clean_params, format_list, time_convert

__all__ = [
    "RequestExecutor",
    "SchwabClient",
    "TimeFormat",
    "clean_params",
    "format_list",
    "is_error_response",
    "time_convert",
    "validate_credentials",
]
