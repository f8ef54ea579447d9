"""Pydantic models for NBP API responses and tool results."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# NBP wire payloads


class NBPRate(BaseModel):
    """One row of an NBP table C series."""

    no: str | None = None
    trading_date: str = Field(alias="tradingDate")
    effective_date: str = Field(alias="effectiveDate")
    bid: float
    ask: float


class NBPRateSeries(BaseModel):
    """Response of ``/exchangerates/rates/c/{code}/...``."""

    table: str
    currency: str
    code: str
    rates: list[NBPRate]


class NBPGoldPrice(BaseModel):
    """One entry of ``/cenyzlota/...`` (Polish field names on the wire)."""

    date: str = Field(alias="data")
    price: float = Field(alias="cena")


# Tool results (structured content, camelCase keys)


class _ToolResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CurrencyRateResult(_ToolResult):
    table: str = Field(description="NBP table identifier ('C' for buy/sell rates)")
    currency: str = Field(description="Full currency name (e.g. 'dolar amerykański')")
    code: str = Field(description="Three-letter currency code (e.g. 'USD')")
    bid: float = Field(description="Bank's buying price in PLN (what you receive when selling currency)")
    ask: float = Field(description="Bank's selling price in PLN (what you pay when buying currency)")
    trading_date: str = Field(alias="tradingDate", description="Trading date, YYYY-MM-DD")
    effective_date: str = Field(alias="effectiveDate", description="Effective date, YYYY-MM-DD")


class GoldPriceResult(_ToolResult):
    date: str = Field(description="Price publication date, YYYY-MM-DD")
    price: float = Field(description="Gold price in PLN per gram (1000 millesimal fineness)")


class HistoricalRate(_ToolResult):
    trading_date: str = Field(alias="tradingDate", description="Trading date, YYYY-MM-DD")
    effective_date: str = Field(alias="effectiveDate", description="Effective date, YYYY-MM-DD")
    bid: float = Field(description="Bank's buying price in PLN")
    ask: float = Field(description="Bank's selling price in PLN")


class CurrencyHistoryResult(_ToolResult):
    table: str = Field(description="NBP table identifier ('C' for buy/sell rates)")
    currency: str = Field(description="Full currency name")
    code: str = Field(description="Three-letter currency code")
    rates: list[HistoricalRate] = Field(
        description="Daily rates within the requested range (trading days only)"
    )
