"""
Optimistic mutations over the query cache.

Each mutation is an explicit state machine:

    IDLE --begin()--> APPLYING --confirm()--> CONFIRMED
                          \\-----rollback()--> ROLLED_BACK

`begin` cancels background refreshes under the affected prefixes and
snapshots every cached value there; `apply` writes the predicted values;
the caller then sends the request and resolves the mutation.

Rollback restores each snapshot verbatim when the cached value is still the
one this mutation predicted. When something else has written the key in the
meantime (typically another lead's mutation sharing the same list), only this
mutation's entity is put back, so a later-failing mutation never undoes a
different, successful one. Predictions build new containers instead of editing
cached ones, so "still the one this mutation predicted" is an identity check.
Neither predictions nor rollbacks mark a key fresh; an invalidation made by
another, confirmed mutation stays in force.

`MutationCoordinator` drives these machines for lead and interaction writes
and serialises mutations that target the same lead.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Sequence

from crm_client.query_cache import (
    LEADS_ROOT,
    QueryCache,
    QueryKey,
    interactions_key,
)

logger = logging.getLogger(__name__)

Predictor = Callable[[QueryKey, Any], Any]
Reverter = Callable[[QueryKey, Any, Any], Any]


class MutationState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class InvalidTransition(RuntimeError):
    pass


@dataclass
class Snapshot:
    key: QueryKey
    value: Any
    stale: bool = False
    predicted: Any = None


@dataclass
class OptimisticMutation:
    cache: QueryCache
    entity_id: str
    affected: Sequence[QueryKey]
    state: MutationState = MutationState.IDLE
    snapshots: List[Snapshot] = field(default_factory=list)

    def _require(self, expected: MutationState) -> None:
        if self.state is not expected:
            raise InvalidTransition(f"Mutation is {self.state.value}, expected {expected.value}")

    def begin(self) -> "OptimisticMutation":
        self._require(MutationState.IDLE)
        for prefix in self.affected:
            self.cache.cancel_refreshes(prefix)
            for key, value in self.cache.items(prefix):
                self.snapshots.append(
                    Snapshot(key=key, value=copy.deepcopy(value), stale=self.cache.is_stale(key))
                )
        self.state = MutationState.APPLYING
        return self

    def apply(self, predict: Predictor) -> "OptimisticMutation":
        self._require(MutationState.APPLYING)
        for snapshot in self.snapshots:
            predicted = predict(snapshot.key, copy.deepcopy(snapshot.value))
            snapshot.predicted = predicted
            self.cache.set(snapshot.key, predicted, mark_fresh=False)
        return self

    def confirm(self) -> None:
        self._require(MutationState.APPLYING)
        self.state = MutationState.CONFIRMED
        for prefix in self.affected:
            self.cache.invalidate(prefix)

    def rollback(self, revert: Reverter) -> None:
        self._require(MutationState.APPLYING)
        for snapshot in self.snapshots:
            current = self.cache.get(snapshot.key)
            if current is snapshot.predicted:
                restored = snapshot.value
            else:
                restored = revert(snapshot.key, current, snapshot.value)
            # Keeps any invalidation made since begin(), e.g. by a confirmed mutation.
            self.cache.set(snapshot.key, restored, mark_fresh=False)
            if snapshot.stale and not self.cache.is_stale(snapshot.key):
                self.cache.invalidate(snapshot.key)
        self.state = MutationState.ROLLED_BACK


# Cache value shapes: a lead dict (detail keys) or a page
# {"leads": [...], "total": n, ...} (list and search keys).


def _is_page(value: Any) -> bool:
    return isinstance(value, Mapping) and isinstance(value.get("leads"), list)


def _same_id(lead: Any, entity_id: str) -> bool:
    return isinstance(lead, Mapping) and str(lead.get("id")) == entity_id


def predict_update(entity_id: str, changes: Mapping[str, Any]) -> Predictor:
    def predict(key: QueryKey, value: Any) -> Any:
        if _is_page(value):
            leads = [{**lead, **changes} if _same_id(lead, entity_id) else lead for lead in value["leads"]]
            return {**value, "leads": leads}
        if _same_id(value, entity_id):
            return {**value, **changes}
        return value

    return predict


def predict_delete(entity_id: str) -> Predictor:
    def predict(key: QueryKey, value: Any) -> Any:
        if _is_page(value):
            kept = [lead for lead in value["leads"] if not _same_id(lead, entity_id)]
            removed = len(value["leads"]) - len(kept)
            predicted = {**value, "leads": kept}
            if removed and isinstance(value.get("total"), int):
                predicted["total"] = max(0, value["total"] - removed)
            return predicted
        if _same_id(value, entity_id):
            return None
        return value

    return predict


def revert_entity(entity_id: str) -> Reverter:
    """
    Put this mutation's entity back into a value another writer has changed
    since the snapshot, leaving everything else in `current` alone.
    """

    def revert(key: QueryKey, current: Any, snapshot: Any) -> Any:
        if not _is_page(snapshot):
            # Detail entries belong to a single lead and mutations on one lead
            # are serialised, so the snapshot is authoritative.
            return snapshot if _same_id(snapshot, entity_id) or current is None else current
        if not _is_page(current):
            return snapshot

        original_index = next(
            (i for i, lead in enumerate(snapshot["leads"]) if _same_id(lead, entity_id)), None
        )
        if original_index is None:
            return current
        original = snapshot["leads"][original_index]

        leads = list(current["leads"])
        position = next((i for i, lead in enumerate(leads) if _same_id(lead, entity_id)), None)
        restored = dict(current)
        if position is not None:
            leads[position] = original
        else:
            leads.insert(min(original_index, len(leads)), original)
            if isinstance(current.get("total"), int):
                restored["total"] = current["total"] + 1
        restored["leads"] = leads
        return restored

    return revert


def replace_entity(entity_id: str, lead: Mapping[str, Any]) -> Predictor:
    """Write the server's copy of a lead over the predicted one."""
    return predict_update(entity_id, lead)


class MutationCoordinator:
    """
    Runs optimistic lead mutations against an API client and a QueryCache.

    `api` needs the coroutine methods of `crm_client.api.LeadsApi` that are
    used here; tests pass a fake.
    """

    def __init__(self, api: Any, cache: QueryCache) -> None:
        self._api = api
        self._cache = cache
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, int] = {}

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks[entity_id] = asyncio.Lock()
        return lock

    def is_pending(self, entity_id: str) -> bool:
        return self._pending.get(str(entity_id), 0) > 0

    async def _run(
        self,
        entity_id: str,
        predict: Predictor,
        request: Callable[[], Any],
        affected: Sequence[QueryKey] = (LEADS_ROOT,),
    ) -> Any:
        self._pending[entity_id] = self._pending.get(entity_id, 0) + 1
        try:
            async with self._lock_for(entity_id):
                mutation = OptimisticMutation(self._cache, entity_id, affected).begin()
                mutation.apply(predict)
                try:
                    result = await request()
                except (Exception, asyncio.CancelledError):
                    mutation.rollback(revert_entity(entity_id))
                    logger.info("Rolled back optimistic mutation of lead %s", entity_id)
                    raise
                if isinstance(result, Mapping):
                    self._cache.update_matching(LEADS_ROOT, replace_entity(entity_id, result))
                mutation.confirm()
                return result
        finally:
            self._pending[entity_id] -= 1
            if not self._pending[entity_id]:
                # Nobody holds or waits on the lock once the count is zero.
                del self._pending[entity_id]
                self._locks.pop(entity_id, None)

    async def update_lead(self, lead_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        lead_id = str(lead_id)
        return await self._run(
            lead_id,
            predict_update(lead_id, changes),
            lambda: self._api.update_lead(lead_id, changes),
        )

    async def delete_lead(self, lead_id: str) -> None:
        lead_id = str(lead_id)
        await self._run(
            lead_id,
            predict_delete(lead_id),
            lambda: self._api.delete_lead(lead_id),
            affected=(LEADS_ROOT, interactions_key(lead_id)),
        )

    async def create_lead(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        # The server assigns the id and ordering; nothing sensible to predict.
        lead = await self._api.create_lead(data)
        self._cache.invalidate(LEADS_ROOT)
        return lead

    async def create_interaction(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        interaction = await self._api.create_interaction(data)
        lead_id = str(data.get("lead_id") or interaction.get("lead_id"))
        self._cache.invalidate(interactions_key(lead_id))
        return interaction


__all__ = [
    "MutationState",
    "InvalidTransition",
    "OptimisticMutation",
    "MutationCoordinator",
    "predict_update",
    "predict_delete",
    "revert_entity",
]
