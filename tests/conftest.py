"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from nbp_mcp.api.client import NBPClient
from nbp_mcp.api.models import (
    CurrencyHistoryResult,
    CurrencyRateResult,
    GoldPriceResult,
    HistoricalRate,
)
from nbp_mcp.config import Settings
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.dispatcher import ToolDispatcher


@pytest.fixture
def settings() -> Settings:
    """Settings with fast retries and no .env influence."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        consume_max_attempts=3,
        consume_backoff_seconds=0,
    )


@pytest_asyncio.fixture
async def store() -> AsyncIterator[LedgerStore]:
    """In-memory ledger sharing one connection across sessions."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    ledger = LedgerStore(engine=engine)
    await ledger.create_all()
    yield ledger
    await ledger.dispose()


def sample_rate(code: str = "USD", date: str = "2025-10-01") -> CurrencyRateResult:
    return CurrencyRateResult(
        table="C",
        currency="dolar amerykański",
        code=code,
        bid=3.6012,
        ask=3.6740,
        trading_date="2025-09-30",
        effective_date=date,
    )


def sample_gold(date: str = "2025-10-01") -> GoldPriceResult:
    return GoldPriceResult(date=date, price=452.37)


def sample_history(code: str = "EUR") -> CurrencyHistoryResult:
    return CurrencyHistoryResult(
        table="C",
        currency="euro",
        code=code,
        rates=[
            HistoricalRate(trading_date="2025-01-02", effective_date="2025-01-03", bid=4.21, ask=4.29),
            HistoricalRate(trading_date="2025-01-03", effective_date="2025-01-06", bid=4.22, ask=4.30),
        ],
    )


@pytest.fixture
def nbp_api() -> AsyncMock:
    """NBP client double returning canned results."""
    api = AsyncMock(spec=NBPClient)
    api.get_currency_rate = AsyncMock(return_value=sample_rate())
    api.get_gold_price = AsyncMock(return_value=sample_gold())
    api.get_currency_history = AsyncMock(return_value=sample_history())
    return api


@pytest.fixture
def make_dispatcher(store: LedgerStore, nbp_api: AsyncMock, settings: Settings):
    """Factory: ToolDispatcher bound to the test ledger for a given user."""

    def _make(user_id: str, email: str | None = None) -> ToolDispatcher:
        return ToolDispatcher(store, nbp_api, user_id, email, settings)

    return _make
