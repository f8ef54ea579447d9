"""Atomic, idempotent token consumption.

One consumption is a single database transaction that (1) decrements the
user's balance, (2) appends a ``transactions`` row and (3) appends an
``mcp_actions`` row. Either all three land or none do.

The caller pre-generates ``action_id`` before running the business action.
A second call with the same ``action_id`` finds the recorded action and
returns its outcome without charging again; if two calls race, the unique
key on ``mcp_actions.action_id`` rejects the loser, which then reports the
winner's outcome.

Contract: this module does NOT check sufficiency. Callers run
:func:`nbp_mcp.balance.check_balance` first; misuse can drive a balance
negative.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from nbp_mcp.db.models import McpAction, Transaction, User
from nbp_mcp.db.store import LedgerStore
from nbp_mcp.utils.constants import TRANSACTION_TYPE_USAGE

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """Base exception for ledger write failures."""


class UserNotFoundError(LedgerError):
    """Raised when the debit matched no user row."""


class LedgerUnavailableError(LedgerError):
    """Raised when the consumption unit keeps failing after all retries."""


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsumptionResult:
    new_balance: int
    transaction_id: str
    action_id: str
    already_applied: bool = False


def _validate(user_id: str, amount: int, service_id: str, tool_id: str, action_id: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"amount must be a positive integer, got {amount!r}")
    if not user_id:
        raise ValueError("user_id must be non-empty")
    if not service_id:
        raise ValueError("service_id must be non-empty")
    if not tool_id:
        raise ValueError("tool_id must be non-empty")
    if not action_id:
        raise ValueError("action_id must be non-empty")


def _serialize(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


async def _recorded_outcome(session: AsyncSession, action_id: str) -> ConsumptionResult | None:
    """Outcome of an already-applied action, or None if ``action_id`` is new."""
    action = await session.get(McpAction, action_id)
    if action is None:
        return None
    result = await session.execute(
        select(Transaction).where(Transaction.action_id == action_id)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise LedgerError(f"Action {action_id} is recorded without a transaction.")
    return ConsumptionResult(
        new_balance=txn.balance_after,
        transaction_id=txn.transaction_id,
        action_id=action_id,
        already_applied=True,
    )


async def consume_tokens(
    store: LedgerStore,
    user_id: str,
    amount: int,
    service_id: str,
    tool_id: str,
    input_params: Any,
    result_payload: Any,
    success: bool,
    action_id: str,
) -> ConsumptionResult:
    """Charge ``amount`` tokens for one tool invocation (single attempt).

    Raises:
        ValueError: invalid arguments (programming error).
        UserNotFoundError: no such user.
        OperationalError: transient storage failure; safe to retry with the
            same ``action_id``.
    """
    _validate(user_id, amount, service_id, tool_id, action_id)
    parameters = _serialize(input_params)
    result_summary = _serialize(result_payload)
    transaction_id = str(uuid.uuid4())

    try:
        async with store.session() as session:
            async with session.begin():
                recorded = await _recorded_outcome(session, action_id)
                if recorded is not None:
                    logger.info("Action %s already applied; not charging again.", action_id)
                    return recorded

                debit = await session.execute(
                    update(User)
                    .where(User.user_id == user_id)
                    .values(
                        current_token_balance=User.current_token_balance - amount,
                        total_tokens_used=User.total_tokens_used + amount,
                    )
                    .execution_options(synchronize_session=False)
                )
                if debit.rowcount == 0:
                    raise UserNotFoundError(f"User {user_id} not found in ledger.")

                # balance_after is the stored post-update value, never balance - amount.
                new_balance = (
                    await session.execute(
                        select(User.current_token_balance).where(User.user_id == user_id)
                    )
                ).scalar_one()

                session.add(Transaction(
                    transaction_id=transaction_id,
                    user_id=user_id,
                    type=TRANSACTION_TYPE_USAGE,
                    token_amount=-amount,
                    balance_after=new_balance,
                    description=f"{service_id}: {tool_id}",
                    action_id=action_id,
                ))
                session.add(McpAction(
                    action_id=action_id,
                    user_id=user_id,
                    mcp_server_name=service_id,
                    tool_name=tool_id,
                    parameters=parameters,
                    result_summary=result_summary,
                    tokens_consumed=amount,
                    success=success,
                ))
    except IntegrityError:
        # Lost a race on the action_id unique key: the other writer's charge stands.
        async with store.session() as session:
            recorded = await _recorded_outcome(session, action_id)
        if recorded is None:
            raise
        logger.info("Action %s committed concurrently; reporting recorded outcome.", action_id)
        return recorded

    logger.debug(
        "Consumed %d token(s) from %s for %s (balance now %d).",
        amount, user_id, tool_id, new_balance,
    )
    return ConsumptionResult(
        new_balance=new_balance,
        transaction_id=transaction_id,
        action_id=action_id,
    )


async def consume_tokens_with_retry(
    store: LedgerStore,
    user_id: str,
    amount: int,
    service_id: str,
    tool_id: str,
    input_params: Any,
    result_payload: Any,
    success: bool,
    action_id: str,
    max_attempts: int = 3,
    backoff_seconds: float = 0.1,
) -> ConsumptionResult:
    """:func:`consume_tokens` with bounded retries on transient storage errors.

    Retrying is safe because every attempt carries the same ``action_id``.
    Raises :class:`LedgerUnavailableError` once ``max_attempts`` are used up.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: OperationalError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await consume_tokens(
                store,
                user_id,
                amount,
                service_id,
                tool_id,
                input_params,
                result_payload,
                success,
                action_id,
            )
        except OperationalError as e:
            last_error = e
            if attempt == max_attempts:
                break
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Token consumption attempt %d/%d for action %s failed (%s); retrying in %.2fs.",
                attempt, max_attempts, action_id, e.orig, delay,
            )
            await asyncio.sleep(delay)

    logger.error(
        "Token consumption for action %s failed after %d attempts.", action_id, max_attempts
    )
    raise LedgerUnavailableError(
        f"Ledger unavailable after {max_attempts} attempts"
    ) from last_error
