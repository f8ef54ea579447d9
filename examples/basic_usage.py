"""Basic usage example for the NBP Exchange MCP server.

Part 1 calls the NBP API directly. Part 2 provisions a local ledger account,
issues an API key and prints the curl command for the ``/api/mcp`` endpoint.
"""

import asyncio
import os

from nbp_mcp.api.client import NBPAPIError, NBPClient
from nbp_mcp.auth import issue_api_key
from nbp_mcp.config import get_settings
from nbp_mcp.db.store import LedgerStore


async def show_rates() -> None:
    """Demonstrate direct NBP client usage."""
    async with NBPClient() as api:
        print("\n=== USD today ===")
        try:
            rate = await api.get_currency_rate("USD")
            print(f"{rate.code}: bid {rate.bid} / ask {rate.ask} PLN ({rate.effective_date})")
        except NBPAPIError as e:
            print(f"Error: {e}")

        print("\n=== Gold ===")
        gold = await api.get_gold_price()
        print(f"1 g of gold: {gold.price} PLN ({gold.date})")

        print("\n=== EUR, first week of 2025 ===")
        history = await api.get_currency_history("EUR", "2025-01-02", "2025-01-08")
        for r in history.rates:
            print(f"{r.effective_date}: {r.bid} / {r.ask}")


async def provision_demo_account() -> None:
    """Create a demo account with 10 tokens and print a ready-to-use API key."""
    settings = get_settings()
    store = LedgerStore(settings.database_url)
    await store.create_all()

    email = os.getenv("DEMO_EMAIL", "demo@example.com")
    user = await store.get_user_by_email(email) or await store.create_user(email, balance=10)
    api_key = await issue_api_key(store, user.user_id, name="basic_usage example")
    await store.dispose()

    print("\n=== API key ===")
    print(f"Account {email} (balance {user.current_token_balance})")
    print(
        f"curl -s -X POST {settings.public_base_url}/api/mcp "
        f"-H 'Authorization: Bearer {api_key}' "
        "-d '{\"jsonrpc\":\"2.0\",\"id\":1,\"method\":\"tools/call\","
        "\"params\":{\"name\":\"getGoldPrice\",\"arguments\":{}}}'"
    )


async def main() -> None:
    await show_rates()
    await provision_demo_account()


if __name__ == "__main__":
    asyncio.run(main())
