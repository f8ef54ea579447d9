"""Tests for balance checks and the ledger store helpers they rely on."""

import pytest

from nbp_mcp.balance import BalanceCheck, check_balance
from nbp_mcp.db.store import LedgerStore


class TestCheckBalance:
    @pytest.mark.asyncio
    async def test_sufficient_balance(self, store: LedgerStore) -> None:
        user = await store.create_user("a@example.com", balance=5)
        assert await check_balance(store, user.user_id, 1) == BalanceCheck(True, 5, False)

    @pytest.mark.asyncio
    async def test_exact_balance_is_sufficient(self, store: LedgerStore) -> None:
        user = await store.create_user("b@example.com", balance=1)
        result = await check_balance(store, user.user_id, 1)
        assert result.sufficient is True

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, store: LedgerStore) -> None:
        user = await store.create_user("c@example.com", balance=0)
        result = await check_balance(store, user.user_id, 1)
        assert result == BalanceCheck(sufficient=False, current_balance=0, user_deleted=False)

    @pytest.mark.asyncio
    async def test_missing_user_is_insufficient_not_an_error(self, store: LedgerStore) -> None:
        result = await check_balance(store, "no-such-user", 1)
        assert result == BalanceCheck(sufficient=False, current_balance=0, user_deleted=False)

    @pytest.mark.asyncio
    async def test_deleted_user_rejected_regardless_of_balance(self, store: LedgerStore) -> None:
        user = await store.create_user("d@example.com", balance=1000)
        assert await store.soft_delete_user(user.user_id) is True

        result = await check_balance(store, user.user_id, 1)

        assert result.sufficient is False
        assert result.user_deleted is True
        assert result.current_balance == 1000

    @pytest.mark.asyncio
    async def test_repeated_checks_are_identical(self, store: LedgerStore) -> None:
        user = await store.create_user("e@example.com", balance=3)
        first = await check_balance(store, user.user_id, 2)
        second = await check_balance(store, user.user_id, 2)
        assert first == second

    @pytest.mark.asyncio
    async def test_sees_writes_made_outside_the_checker(self, store: LedgerStore) -> None:
        """A top-up by another writer is visible on the very next check."""
        from sqlalchemy import update

        from nbp_mcp.db.models import User

        user = await store.create_user("f@example.com", balance=0)
        assert (await check_balance(store, user.user_id, 1)).sufficient is False

        async with store.session() as session:
            async with session.begin():
                await session.execute(
                    update(User).where(User.user_id == user.user_id).values(current_token_balance=4)
                )

        assert await check_balance(store, user.user_id, 1) == BalanceCheck(True, 4, False)


class TestLedgerStore:
    @pytest.mark.asyncio
    async def test_create_user_records_opening_purchase(self, store: LedgerStore) -> None:
        user = await store.create_user("g@example.com", balance=7)

        txns = await store.list_transactions(user.user_id)
        assert len(txns) == 1
        assert txns[0].type == "purchase"
        assert txns[0].token_amount == 7
        assert txns[0].balance_after == 7
        assert (await store.get_user_by_email("g@example.com")).user_id == user.user_id

    @pytest.mark.asyncio
    async def test_zero_balance_user_has_no_transactions(self, store: LedgerStore) -> None:
        user = await store.create_user("h@example.com")
        assert await store.list_transactions(user.user_id) == []
        assert await store.latest_transaction(user.user_id) is None

    @pytest.mark.asyncio
    async def test_negative_opening_balance_rejected(self, store: LedgerStore) -> None:
        with pytest.raises(ValueError):
            await store.create_user("i@example.com", balance=-1)

    @pytest.mark.asyncio
    async def test_soft_delete_unknown_user(self, store: LedgerStore) -> None:
        assert await store.soft_delete_user("nobody") is False

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_row(self, store: LedgerStore) -> None:
        user = await store.create_user("j@example.com", balance=2)
        await store.soft_delete_user(user.user_id)

        refreshed = await store.get_user(user.user_id)
        assert refreshed.is_deleted is True
        assert refreshed.deleted_at is not None
        assert len(await store.list_transactions(user.user_id)) == 1

    def test_requires_url_or_engine(self) -> None:
        with pytest.raises(ValueError):
            LedgerStore()
