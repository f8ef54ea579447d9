"""NBP tool inputs, pre-charge validation and business-logic callbacks.

Validation here runs before any balance check: a request rejected by
``validate_*`` is never charged.
"""

import math
from datetime import date
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from nbp_mcp.api.client import NBPClient
from nbp_mcp.api.models import CurrencyHistoryResult, CurrencyRateResult, GoldPriceResult
from nbp_mcp.utils.constants import (
    GOLD_HISTORY_START,
    MAX_HISTORY_DAYS,
    RATES_HISTORY_START,
    SUPPORTED_CURRENCIES,
)


class ToolInputError(ValueError):
    """Arguments are well-formed but fail a business pre-condition."""

    pass


def _check_currency(value: str) -> str:
    if value not in SUPPORTED_CURRENCIES:
        raise ValueError(
            f"unsupported currency {value!r}; use one of {', '.join(SUPPORTED_CURRENCIES)}"
        )
    return value


def _check_date(value: str) -> str:
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{value!r} is not a valid date in YYYY-MM-DD format") from None
    if len(value) != 10 or parsed.isoformat() != value:
        raise ValueError(f"{value!r} is not a valid date in YYYY-MM-DD format")
    return value


CurrencyCode = Annotated[str, AfterValidator(_check_currency)]
IsoDate = Annotated[str, AfterValidator(_check_date)]


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_arguments(self) -> dict[str, str]:
        """Arguments as the caller spelled them (camelCase, no unset optionals)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CurrencyRateInput(_ToolInput):
    currency_code: CurrencyCode = Field(alias="currencyCode")
    date: IsoDate | None = None


class GoldPriceInput(_ToolInput):
    date: IsoDate | None = None


class CurrencyHistoryInput(_ToolInput):
    currency_code: CurrencyCode = Field(alias="currencyCode")
    start_date: IsoDate = Field(alias="startDate")
    end_date: IsoDate = Field(alias="endDate")


# ---------------------------------------------------------------------------
# Pre-condition validators
# ---------------------------------------------------------------------------


def _check_not_future(value: str, today: date) -> None:
    if date.fromisoformat(value) > today:
        raise ToolInputError(f"Date {value} is in the future. NBP only publishes past rates.")


def validate_currency_rate(params: CurrencyRateInput, today: date | None = None) -> None:
    if params.date is None:
        return
    today = today or date.today()
    _check_not_future(params.date, today)
    if date.fromisoformat(params.date) < RATES_HISTORY_START:
        raise ToolInputError(
            f"Date {params.date} is before {RATES_HISTORY_START.isoformat()}, "
            "when NBP digital records begin."
        )


def validate_gold_price(params: GoldPriceInput, today: date | None = None) -> None:
    if params.date is None:
        return
    today = today or date.today()
    _check_not_future(params.date, today)
    if date.fromisoformat(params.date) < GOLD_HISTORY_START:
        raise ToolInputError(
            f"Date {params.date} is before {GOLD_HISTORY_START.isoformat()}, "
            "when NBP gold price records begin."
        )


def history_span_days(start: str, end: str) -> int:
    """Whole days from ``start`` to ``end``, rounded up (negative when reversed)."""
    delta = date.fromisoformat(end) - date.fromisoformat(start)
    return math.ceil(delta.total_seconds() / 86400)


def validate_currency_history(params: CurrencyHistoryInput, today: date | None = None) -> None:
    today = today or date.today()
    days = history_span_days(params.start_date, params.end_date)
    if days > MAX_HISTORY_DAYS:
        raise ToolInputError(
            f"Date range exceeds maximum of {MAX_HISTORY_DAYS} days ({days} requested). "
            "Please reduce the range."
        )
    if days < 0:
        raise ToolInputError("End date must be after start date.")
    if date.fromisoformat(params.start_date) < RATES_HISTORY_START:
        raise ToolInputError(
            f"Start date {params.start_date} is before {RATES_HISTORY_START.isoformat()}, "
            "when NBP digital records begin."
        )
    _check_not_future(params.end_date, today)


# ---------------------------------------------------------------------------
# Callbacks
# ---------------------------------------------------------------------------


async def get_currency_rate(api: NBPClient, params: CurrencyRateInput) -> CurrencyRateResult:
    return await api.get_currency_rate(params.currency_code, params.date)


async def get_gold_price(api: NBPClient, params: GoldPriceInput) -> GoldPriceResult:
    return await api.get_gold_price(params.date)


async def get_currency_history(api: NBPClient, params: CurrencyHistoryInput) -> CurrencyHistoryResult:
    return await api.get_currency_history(params.currency_code, params.start_date, params.end_date)
