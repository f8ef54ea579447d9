"""Single source of truth for tool names, costs, descriptions and schemas.

Both authentication paths build their tool listings and route their calls
through ``TOOL_SPECS``, so the two never diverge.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mcp.types import Tool
from pydantic import BaseModel

from nbp_mcp.api.client import NBPClient
from nbp_mcp.api.models import CurrencyHistoryResult, CurrencyRateResult, GoldPriceResult
from nbp_mcp.tools import nbp
from nbp_mcp.tools.nbp import (
    CurrencyHistoryInput,
    CurrencyRateInput,
    GoldPriceInput,
    ToolInputError,
)
from nbp_mcp.utils.constants import (
    DATE_PATTERN,
    HISTORY_MAX_OUTPUT_LENGTH,
    SUPPORTED_CURRENCIES,
    ToolTier,
)

__all__ = [
    "TOOL_SPECS",
    "ToolInputError",
    "ToolNotFoundError",
    "ToolSpec",
    "get_tool_spec",
    "list_tool_definitions",
]


class ToolNotFoundError(LookupError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


@dataclass(frozen=True)
class ToolSpec:
    """Everything both adapters need to list and run one tool."""

    name: str
    title: str
    description: str
    cost: int
    input_model: type[BaseModel]
    input_schema: dict[str, Any]
    output_model: type[BaseModel]
    execute: Callable[[NBPClient, Any], Awaitable[Any]]
    validate: Callable[[Any], None] | None = None
    max_output_length: int | None = None

    @property
    def output_schema(self) -> dict[str, Any]:
        return self.output_model.model_json_schema(by_alias=True)

    def to_mcp_tool(self) -> Tool:
        return Tool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.input_schema,
            outputSchema=self.output_schema,
        )


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------

CURRENCY_CODE_SCHEMA: dict[str, Any] = {
    "type": "string",
    "enum": list(SUPPORTED_CURRENCIES),
    "description": (
        "Three-letter ISO 4217 currency code (uppercase). "
        f"Supported currencies: {', '.join(SUPPORTED_CURRENCIES)}"
    ),
}


def _date_schema(description: str) -> dict[str, Any]:
    return {"type": "string", "pattern": DATE_PATTERN, "description": description}


RATE_DATE_DESCRIPTION = (
    "Optional: Specific date in YYYY-MM-DD format (e.g., '2025-10-01'). "
    "If omitted, returns the most recent available rate. "
    "Must be a trading day (not weekend/holiday)."
)
GOLD_DATE_DESCRIPTION = (
    "Optional: Specific date in YYYY-MM-DD format (e.g., '2025-10-01'). "
    "If omitted, returns the most recent available gold price. "
    "Must be a trading day on or after 2013-01-02."
)
START_DATE_DESCRIPTION = (
    "Start date in YYYY-MM-DD format (e.g., '2025-01-01'). "
    "Must be on or after 2002-01-02 when NBP digital records begin."
)
END_DATE_DESCRIPTION = (
    "End date in YYYY-MM-DD format (e.g., '2025-03-31'). "
    "Must be after startDate and within 93 days of startDate (NBP API limit)."
)

CURRENCY_RATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "currencyCode": CURRENCY_CODE_SCHEMA,
        "date": _date_schema(RATE_DATE_DESCRIPTION),
    },
    "required": ["currencyCode"],
}

GOLD_PRICE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "date": _date_schema(GOLD_DATE_DESCRIPTION),
    },
    "required": [],
}

CURRENCY_HISTORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "currencyCode": CURRENCY_CODE_SCHEMA,
        "startDate": _date_schema(START_DATE_DESCRIPTION),
        "endDate": _date_schema(END_DATE_DESCRIPTION),
    },
    "required": ["currencyCode", "startDate", "endDate"],
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

TOOL_SPECS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec(
            name="getCurrencyRate",
            title="Get Currency Exchange Rate",
            description=(
                "Get current or historical buy/sell exchange rates for a specific currency "
                "from the Polish National Bank (NBP). Returns bid (bank buy) and ask (bank sell) "
                "prices in Polish Zloty (PLN) from NBP Table C. Use this when you need to know "
                "how much a currency costs to exchange at Polish banks. Note: NBP only publishes "
                "rates on trading days (Mon-Fri, excluding Polish holidays)."
            ),
            cost=ToolTier.READ,
            input_model=CurrencyRateInput,
            input_schema=CURRENCY_RATE_SCHEMA,
            output_model=CurrencyRateResult,
            execute=nbp.get_currency_rate,
            validate=nbp.validate_currency_rate,
        ),
        ToolSpec(
            name="getGoldPrice",
            title="Get Gold Price",
            description=(
                "Get the official price of 1 gram of gold (1000 millesimal fineness) in Polish "
                "Zloty (PLN) as calculated and published by the Polish National Bank (NBP). "
                "Use this for investment analysis, comparing gold prices over time, or checking "
                "current gold valuation. Note: Prices are only published on trading days "
                "(Mon-Fri, excluding holidays). Historical data available from January 2, 2013 "
                "onwards."
            ),
            cost=ToolTier.READ,
            input_model=GoldPriceInput,
            input_schema=GOLD_PRICE_SCHEMA,
            output_model=GoldPriceResult,
            execute=nbp.get_gold_price,
            validate=nbp.validate_gold_price,
        ),
        ToolSpec(
            name="getCurrencyHistory",
            title="Get Currency History",
            description=(
                "Get a time series of historical exchange rates for a currency over a date "
                "range. Returns buy/sell rates (bid/ask) in PLN for each trading day within the "
                "specified period. Useful for analyzing currency trends, calculating average "
                "rates, or comparing rates across months. IMPORTANT: NBP API limit is maximum "
                "93 days per query. Only trading days are included (weekends/holidays are "
                "skipped)."
            ),
            cost=ToolTier.READ,
            input_model=CurrencyHistoryInput,
            input_schema=CURRENCY_HISTORY_SCHEMA,
            output_model=CurrencyHistoryResult,
            execute=nbp.get_currency_history,
            validate=nbp.validate_currency_history,
            max_output_length=HISTORY_MAX_OUTPUT_LENGTH,
        ),
    )
}


def get_tool_spec(name: str) -> ToolSpec:
    try:
        return TOOL_SPECS[name]
    except KeyError:
        raise ToolNotFoundError(name) from None


def list_tool_definitions() -> list[Tool]:
    """Static tool listing served by ``tools/list``."""
    return [spec.to_mcp_tool() for spec in TOOL_SPECS.values()]
