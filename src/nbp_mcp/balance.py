"""Balance checks against the shared ledger.

Every check is a fresh primary-key read in its own session. Nothing in this
call path accepts or consults a cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nbp_mcp.db.models import User
from nbp_mcp.db.store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceCheck:
    """Outcome of a balance check. ``user_deleted`` implies ``sufficient is False``."""

    sufficient: bool
    current_balance: int
    user_deleted: bool = False


async def check_balance(store: LedgerStore, user_id: str, required_amount: int) -> BalanceCheck:
    """Does ``user_id`` hold at least ``required_amount`` tokens on an active account?

    A missing user is reported as insufficient with a zero balance rather
    than raising.
    """
    async with store.session() as session:
        user = await session.get(User, user_id)

    if user is None:
        logger.info("Balance check for unknown user %s.", user_id)
        return BalanceCheck(sufficient=False, current_balance=0)

    if user.is_deleted:
        return BalanceCheck(
            sufficient=False,
            current_balance=user.current_token_balance,
            user_deleted=True,
        )

    return BalanceCheck(
        sufficient=user.current_token_balance >= required_amount,
        current_balance=user.current_token_balance,
    )
