"""Static API keys for clients that cannot run the OAuth flow.

Keys look like ``nbp_<random>``. Only the sha256 hex digest is stored; the
first characters are kept as ``key_prefix`` so a user can recognize a key in
a listing without exposing it.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import UTC, datetime

from sqlalchemy import select, update

from nbp_mcp.db.models import ApiKey
from nbp_mcp.db.store import LedgerStore

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "nbp_"
DISPLAY_PREFIX_LENGTH = 12


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_urlsafe(32)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


async def issue_api_key(
    store: LedgerStore,
    user_id: str,
    name: str | None = None,
    expires_at: datetime | None = None,
) -> str:
    """Create a key for ``user_id`` and return the raw value (shown only once)."""
    raw_key = generate_api_key()
    async with store.session() as session:
        async with session.begin():
            session.add(ApiKey(
                user_id=user_id,
                key_hash=hash_api_key(raw_key),
                key_prefix=raw_key[:DISPLAY_PREFIX_LENGTH],
                name=name,
                expires_at=expires_at,
            ))
    logger.info("Issued API key %s... for user %s.", raw_key[:DISPLAY_PREFIX_LENGTH], user_id)
    return raw_key


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


async def validate_api_key(store: LedgerStore, raw_key: str) -> str | None:
    """Return the owning user id, or None for unknown, revoked or expired keys.

    Touches ``last_used_at`` on success.
    """
    if not raw_key or not raw_key.startswith(API_KEY_PREFIX):
        return None

    key_hash = hash_api_key(raw_key)
    now = datetime.now(UTC)
    async with store.session() as session:
        async with session.begin():
            result = await session.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
            api_key = result.scalar_one_or_none()
            if api_key is None:
                logger.info("Rejected unknown API key %s...", raw_key[:DISPLAY_PREFIX_LENGTH])
                return None
            if api_key.revoked_at is not None:
                logger.info("Rejected revoked API key %s.", api_key.key_prefix)
                return None
            if api_key.expires_at is not None and _as_utc(api_key.expires_at) <= now:
                logger.info("Rejected expired API key %s.", api_key.key_prefix)
                return None
            api_key.last_used_at = now
            return api_key.user_id


async def revoke_api_key(store: LedgerStore, raw_key: str) -> bool:
    """Revoke a key. Returns False if no active key matched."""
    async with store.session() as session:
        async with session.begin():
            result = await session.execute(
                update(ApiKey)
                .where(ApiKey.key_hash == hash_api_key(raw_key), ApiKey.revoked_at.is_(None))
                .values(revoked_at=datetime.now(UTC))
            )
    return result.rowcount > 0
