"""
Client-side query cache.

Entries are keyed by tuples such as

    ("leads", "list", (("status", "new"),))
    ("leads", "detail", "<lead id>")
    ("interactions", "<lead id>")

and operations that take a prefix apply to every key starting with it, so
("leads",) addresses every lead list and every lead detail at once.

Invalidation keeps the stale value readable and starts a background refresh
for keys whose fetcher is known. `cancel_refreshes` stops those refreshes; a
mutation calls it before writing its predicted value so a refetch started
earlier cannot overwrite the prediction with pre-mutation data.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

QueryKey = Tuple[Any, ...]
Fetcher = Callable[[], Awaitable[Any]]

LEADS_ROOT: QueryKey = ("leads",)


def lead_list_key(params: Optional[Mapping[str, Any]] = None) -> QueryKey:
    canonical = tuple(sorted((k, str(v)) for k, v in (params or {}).items() if v is not None))
    return ("leads", "list", canonical)


def lead_search_key(params: Optional[Mapping[str, Any]] = None) -> QueryKey:
    canonical = tuple(sorted((k, str(v)) for k, v in (params or {}).items() if v is not None))
    return ("leads", "search", canonical)


def lead_detail_key(lead_id: str) -> QueryKey:
    return ("leads", "detail", str(lead_id))


def interactions_key(lead_id: str) -> QueryKey:
    return ("interactions", str(lead_id))


def matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[QueryKey, Any] = {}
        self._fetchers: Dict[QueryKey, Fetcher] = {}
        self._stale: Set[QueryKey] = set()
        self._refreshes: Dict[QueryKey, asyncio.Task] = {}

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def keys(self, prefix: QueryKey = ()) -> List[QueryKey]:
        return [key for key in self._entries if matches(key, prefix)]

    def items(self, prefix: QueryKey = ()) -> Iterator[Tuple[QueryKey, Any]]:
        for key in self.keys(prefix):
            yield key, self._entries[key]

    def get(self, key: QueryKey) -> Any:
        return self._entries.get(key)

    def set(self, key: QueryKey, value: Any, mark_fresh: bool = True) -> None:
        """
        Write a value; None removes the entry.

        With `mark_fresh=False` the stale flag is left as it is, for values
        that are not server state (predictions and their rollbacks).
        """
        if value is None:
            self._entries.pop(key, None)
            self._stale.discard(key)
            return
        self._entries[key] = value
        if mark_fresh:
            self._stale.discard(key)

    def remove(self, prefix: QueryKey) -> None:
        self.cancel_refreshes(prefix)
        for key in self.keys(prefix):
            del self._entries[key]
            self._stale.discard(key)
            self._fetchers.pop(key, None)

    def is_stale(self, key: QueryKey) -> bool:
        return key in self._stale

    async def fetch(self, key: QueryKey, fetcher: Fetcher, force: bool = False) -> Any:
        """Return the cached value, loading it with `fetcher` when missing or stale."""
        self._fetchers[key] = fetcher
        if not force and key in self._entries and key not in self._stale:
            return self._entries[key]
        value = await fetcher()
        self.set(key, value)
        return value

    def update_matching(self, prefix: QueryKey, updater: Callable[[QueryKey, Any], Any]) -> None:
        for key, value in list(self.items(prefix)):
            self.set(key, updater(key, value))

    def invalidate(self, prefix: QueryKey) -> None:
        """Mark matching entries stale and refresh those with a known fetcher."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for key in self.keys(prefix):
            self._stale.add(key)
            fetcher = self._fetchers.get(key)
            if fetcher is None or loop is None:
                continue
            previous = self._refreshes.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._refreshes[key] = loop.create_task(self._refresh(key, fetcher))

    def cancel_refreshes(self, prefix: QueryKey) -> int:
        cancelled = 0
        for key in [k for k in self._refreshes if matches(k, prefix)]:
            task = self._refreshes.pop(key)
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.debug("Cancelled %d background refresh(es) under %r", cancelled, prefix)
        return cancelled

    def pending_refreshes(self, prefix: QueryKey = ()) -> List[QueryKey]:
        return [key for key, task in self._refreshes.items() if matches(key, prefix) and not task.done()]

    async def wait_for_refreshes(self) -> None:
        tasks = [task for task in self._refreshes.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _refresh(self, key: QueryKey, fetcher: Fetcher) -> None:
        try:
            value = await fetcher()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Keep serving the stale value; the next fetch tries again.
            logger.warning("Background refresh of %r failed: %s", key, exc)
            return
        finally:
            if self._refreshes.get(key) is asyncio.current_task():
                del self._refreshes[key]
        self.set(key, value)


__all__ = [
    "QueryCache",
    "QueryKey",
    "LEADS_ROOT",
    "lead_list_key",
    "lead_search_key",
    "lead_detail_key",
    "interactions_key",
    "matches",
]
