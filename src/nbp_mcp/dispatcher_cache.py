"""In-memory LRU cache of per-user ToolDispatcher instances.

Purely a construction-cost optimization. Entries hold references only (no
balances, no ledger rows), so any entry can be evicted at any time without
changing behavior.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable

from nbp_mcp.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)


class DispatcherCache:
    """Bounded LRU of dispatchers keyed by user id.

    - ``get_or_create()`` returns the cached dispatcher or builds one on miss.
    - The least-recently-used entry is dropped once ``maxsize`` is reached.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._maxsize = maxsize
        self._entries: OrderedDict[str, ToolDispatcher] = OrderedDict()

    def get_or_create(
        self, user_id: str, factory: Callable[[], ToolDispatcher]
    ) -> ToolDispatcher:
        """Return the cached dispatcher for ``user_id``, building it on miss."""
        dispatcher = self._entries.get(user_id)
        if dispatcher is not None:
            self._entries.move_to_end(user_id)
            logger.debug("Dispatcher cache hit for %s.", user_id)
            return dispatcher

        logger.debug("Dispatcher cache miss for %s.", user_id)
        dispatcher = factory()

        # Evict LRU if at capacity
        while len(self._entries) >= self._maxsize:
            self._evict_lru()

        self._entries[user_id] = dispatcher
        return dispatcher

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        user_id, _ = self._entries.popitem(last=False)
        logger.debug("Evicted dispatcher for %s.", user_id)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries

    @property
    def size(self) -> int:
        """Number of entries currently in cache."""
        return len(self._entries)
