"""
Realtime change feed -> cache invalidation.

Subscribes to Supabase Realtime postgres changes on the `leads` and
`interactions` tables and invalidates the affected cache entries, so every
open client converges on edits made elsewhere (another tab, an import).

Notifications for a lead with an optimistic mutation in flight are skipped:
the mutation invalidates those keys itself once it resolves, and refreshing
earlier would overwrite the predicted value.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from crm_client.query_cache import LEADS_ROOT, QueryCache, interactions_key, lead_detail_key

logger = logging.getLogger(__name__)

CHANNEL_NAME = "leads-changes"
WATCHED_TABLES = ("leads", "interactions")


def _change_fields(payload: Mapping[str, Any]) -> tuple[Optional[str], Optional[str], Mapping[str, Any]]:
    """(table, event, row) from either the realtime-py or the JS payload layout."""
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        return None, None, {}
    table = data.get("table")
    event = data.get("type") or data.get("eventType")
    row = data.get("record") or data.get("new") or data.get("old_record") or data.get("old") or {}
    return table, (str(event).upper() if event else None), row


class RealtimeListener:
    def __init__(self, cache: QueryCache, coordinator: Any = None, channel_name: str = CHANNEL_NAME) -> None:
        self._cache = cache
        self._coordinator = coordinator
        self._channel_name = channel_name
        self._channel: Any = None

    @property
    def subscribed(self) -> bool:
        return self._channel is not None

    def handle_change(self, payload: Mapping[str, Any]) -> None:
        table, event, row = _change_fields(payload)
        if table == "leads":
            lead_id = str(row.get("id")) if row.get("id") else None
            if lead_id and self._coordinator is not None and self._coordinator.is_pending(lead_id):
                logger.debug("Skipping change for lead %s with a pending mutation", lead_id)
                return
            if lead_id and event == "DELETE":
                self._cache.remove(lead_detail_key(lead_id))
                self._cache.remove(interactions_key(lead_id))
            self._cache.invalidate(LEADS_ROOT)
        elif table == "interactions":
            lead_id = row.get("lead_id")
            if lead_id:
                self._cache.invalidate(interactions_key(str(lead_id)))
        else:
            logger.debug("Ignoring change notification for table %r", table)

    async def subscribe(self, client: Any) -> None:
        """Subscribe with an async Supabase client (`supabase.acreate_client`)."""
        if self._channel is not None:
            return
        channel = client.channel(self._channel_name)
        for table in WATCHED_TABLES:
            channel.on_postgres_changes("*", schema="public", table=table, callback=self.handle_change)
        await channel.subscribe(self._on_status)
        self._channel = channel

    async def unsubscribe(self, client: Any) -> None:
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        await client.remove_channel(channel)

    def _on_status(self, status: Any, error: Optional[Exception] = None) -> None:
        if error is not None:
            logger.warning("Realtime channel %s error: %s", self._channel_name, error)
        else:
            logger.info("Realtime channel %s: %s", self._channel_name, status)


__all__ = ["RealtimeListener", "CHANNEL_NAME"]
