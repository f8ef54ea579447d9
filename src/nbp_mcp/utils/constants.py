"""Constants and enums for the NBP Exchange MCP server."""

from datetime import date
from enum import IntEnum

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)


class ToolTier(IntEnum):
    """Token cost tiers for tool calls."""

    READ = 1


class JsonRpcError(IntEnum):
    """JSON-RPC 2.0 error codes shared by both protocol adapters."""

    PARSE_ERROR = PARSE_ERROR
    INVALID_REQUEST = INVALID_REQUEST
    METHOD_NOT_FOUND = METHOD_NOT_FOUND
    INVALID_PARAMS = INVALID_PARAMS
    INTERNAL_ERROR = INTERNAL_ERROR


JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_VERSION = "1.0.0"

# Currencies quoted in NBP table C (bid/ask)
SUPPORTED_CURRENCIES: tuple[str, ...] = (
    "USD", "EUR", "GBP", "CHF", "AUD", "CAD",
    "SEK", "NOK", "DKK", "JPY", "CZK", "HUF",
)

NBP_TABLE = "c"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

RATES_HISTORY_START = date(2002, 1, 2)
GOLD_HISTORY_START = date(2013, 1, 2)
MAX_HISTORY_DAYS = 93

HISTORY_MAX_OUTPUT_LENGTH = 10000

TRANSACTION_TYPE_USAGE = "usage"
TRANSACTION_TYPE_PURCHASE = "purchase"
