"""Async access to the shared token ledger.

Every accessor opens its own short-lived session, so reads always hit the
database and nothing is kept between calls.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nbp_mcp.db.models import Base, McpAction, Transaction, User
from nbp_mcp.utils.constants import TRANSACTION_TYPE_PURCHASE

logger = logging.getLogger(__name__)


class LedgerStore:
    """Engine + session factory for the ``users``/``transactions``/``mcp_actions`` tables."""

    def __init__(self, database_url: str | None = None, *, engine: AsyncEngine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("LedgerStore needs a database_url or an engine.")
            engine = create_async_engine(database_url, pool_pre_ping=True)
        self.engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)

    def session(self) -> AsyncSession:
        """Return a new session (callers own its lifetime)."""
        return self._sessionmaker()

    async def create_all(self) -> None:
        """Create ledger tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    # -- users ---------------------------------------------------------------

    async def get_user(self, user_id: str) -> User | None:
        async with self.session() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with self.session() as session:
            result = await session.execute(select(User).where(User.email == email))
            return result.scalar_one_or_none()

    async def create_user(self, email: str, balance: int = 0) -> User:
        """Provision an account with an opening balance.

        Accounts are normally created by the billing system; this helper does
        the same writes (user row + ``purchase`` transaction) for local
        development and fixtures.
        """
        if balance < 0:
            raise ValueError("Opening balance must be non-negative.")
        user = User(
            user_id=str(uuid.uuid4()),
            email=email,
            current_token_balance=balance,
            total_tokens_purchased=balance,
            total_tokens_used=0,
        )
        async with self.session() as session:
            async with session.begin():
                session.add(user)
                if balance > 0:
                    session.add(Transaction(
                        user_id=user.user_id,
                        type=TRANSACTION_TYPE_PURCHASE,
                        token_amount=balance,
                        balance_after=balance,
                        description="Opening balance",
                    ))
        logger.info("Provisioned user %s (%s) with %d tokens.", user.user_id, email, balance)
        return user

    async def soft_delete_user(self, user_id: str) -> bool:
        """Flag an account as deleted. Returns False if the user does not exist."""
        async with self.session() as session:
            async with session.begin():
                result = await session.execute(
                    update(User)
                    .where(User.user_id == user_id)
                    .values(is_deleted=True, deleted_at=datetime.now(UTC))
                )
        return result.rowcount > 0

    # -- audit log -----------------------------------------------------------

    async def get_action(self, action_id: str) -> McpAction | None:
        async with self.session() as session:
            return await session.get(McpAction, action_id)

    async def list_transactions(self, user_id: str) -> list[Transaction]:
        async with self.session() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.id)
            )
            return list(result.scalars())

    async def latest_transaction(self, user_id: str) -> Transaction | None:
        async with self.session() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_actions(self, user_id: str) -> list[McpAction]:
        async with self.session() as session:
            result = await session.execute(
                select(McpAction)
                .where(McpAction.user_id == user_id)
                .order_by(McpAction.created_at)
            )
            return list(result.scalars())
