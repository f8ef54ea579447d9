"""NBP (Narodowy Bank Polski) public API client using httpx."""

from typing import Any

import httpx
from pydantic import ValidationError

from nbp_mcp.api.models import (
    CurrencyHistoryResult,
    CurrencyRateResult,
    GoldPriceResult,
    HistoricalRate,
    NBPGoldPrice,
    NBPRateSeries,
)
from nbp_mcp.utils.constants import NBP_TABLE

DEFAULT_BASE_URL = "https://api.nbp.pl/api"


class NBPAPIError(Exception):
    """NBP API error (timeout, transport failure, non-2xx, malformed payload)."""

    pass


class NBPNoDataError(NBPAPIError):
    """NBP answered 404: no data for the date (weekend, holiday, out of range)."""

    pass


class NBPClient:
    """NBP exchange-rate and gold-price client."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the NBP client.

        Args:
            base_url: Base URL for the NBP API
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "NBPClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _get(self, endpoint: str) -> Any:
        """GET an NBP endpoint and return decoded JSON.

        Raises:
            NBPNoDataError: on HTTP 404
            NBPAPIError: on any other failure
        """
        try:
            response = await self.client.get(endpoint, params={"format": "json"})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NBPNoDataError(f"No data found for {endpoint}") from e
            error_msg = f"HTTP {e.response.status_code}: {e.response.text}"
            raise NBPAPIError(error_msg) from e
        except httpx.TimeoutException as e:
            raise NBPAPIError(f"NBP API timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise NBPAPIError(f"Request failed: {str(e)}") from e
        except ValueError as e:
            raise NBPAPIError(f"Malformed NBP response: {str(e)}") from e

    @staticmethod
    def _rates_path(code: str, *dates: str) -> str:
        parts = ["exchangerates", "rates", NBP_TABLE, code.lower(), *dates]
        return "/" + "/".join(parts) + "/"

    async def _get_series(self, endpoint: str) -> NBPRateSeries:
        data = await self._get(endpoint)
        try:
            series = NBPRateSeries.model_validate(data)
        except ValidationError as e:
            raise NBPAPIError(f"Malformed NBP rate payload: {e.error_count()} error(s)") from e
        if not series.rates:
            raise NBPNoDataError(f"No rates returned for {endpoint}")
        return series

    async def get_currency_rate(self, code: str, date: str | None = None) -> CurrencyRateResult:
        """Bid/ask for ``code`` on ``date`` (latest published table when omitted)."""
        endpoint = self._rates_path(code, date) if date else self._rates_path(code)
        series = await self._get_series(endpoint)
        rate = series.rates[0]
        return CurrencyRateResult(
            table=series.table,
            currency=series.currency,
            code=series.code,
            bid=rate.bid,
            ask=rate.ask,
            trading_date=rate.trading_date,
            effective_date=rate.effective_date,
        )

    async def get_gold_price(self, date: str | None = None) -> GoldPriceResult:
        """Price of 1 g of gold in PLN on ``date`` (latest when omitted)."""
        endpoint = f"/cenyzlota/{date}/" if date else "/cenyzlota/"
        data = await self._get(endpoint)
        try:
            prices = [NBPGoldPrice.model_validate(item) for item in data]
        except (TypeError, ValidationError) as e:
            raise NBPAPIError(f"Malformed NBP gold payload: {str(e)}") from e
        if not prices:
            raise NBPNoDataError(f"No gold price returned for {endpoint}")
        return GoldPriceResult(date=prices[0].date, price=prices[0].price)

    async def get_currency_history(self, code: str, start: str, end: str) -> CurrencyHistoryResult:
        """Daily bid/ask for ``code`` between ``start`` and ``end`` inclusive."""
        series = await self._get_series(self._rates_path(code, start, end))
        return CurrencyHistoryResult(
            table=series.table,
            currency=series.currency,
            code=series.code,
            rates=[
                HistoricalRate(
                    trading_date=r.trading_date,
                    effective_date=r.effective_date,
                    bid=r.bid,
                    ask=r.ask,
                )
                for r in series.rates
            ],
        )
