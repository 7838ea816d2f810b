"""
Tests for `crm_client/optimistic.py`.

Covers:
- A failed update restores the cache to exactly what it held before
- A confirmed update is visible immediately and marks entries stale
- A delete that fails puts the lead back at its position with the old total
- A failing mutation does not undo a concurrent, successful one on another lead
  (whichever of the two finishes first), nor clear its invalidation
- Mutations on the same lead run one after the other; idle leads hold no lock
- Background refreshes are cancelled before the prediction is written
"""

from __future__ import annotations

import asyncio
import copy

import pytest

from crm_client.optimistic import (
    InvalidTransition,
    MutationCoordinator,
    MutationState,
    OptimisticMutation,
    predict_delete,
    predict_update,
    revert_entity,
)
from crm_client.query_cache import LEADS_ROOT, QueryCache, interactions_key, lead_detail_key, lead_list_key
from domain.errors import AppError

LEAD_A = {"id": "a", "name": "Alpha", "status": "new", "updated_at": "2025-01-01T00:00:00+00:00"}
LEAD_B = {"id": "b", "name": "Beta", "status": "new", "updated_at": "2025-01-01T00:00:00+00:00"}
LEAD_C = {"id": "c", "name": "Gamma", "status": "new", "updated_at": "2025-01-01T00:00:00+00:00"}


def _seeded_cache() -> QueryCache:
    cache = QueryCache()
    cache.set(lead_list_key(), {"leads": [dict(LEAD_A), dict(LEAD_B), dict(LEAD_C)], "total": 3, "limit": 50, "offset": 0})
    cache.set(lead_detail_key("a"), dict(LEAD_A))
    cache.set(lead_detail_key("b"), dict(LEAD_B))
    cache.set(interactions_key("a"), {"interactions": [{"id": "i1", "lead_id": "a"}], "total": 1})
    return cache


def _snapshot(cache: QueryCache) -> dict:
    return {key: copy.deepcopy(value) for key, value in cache.items()}


class GatedApi:
    """Fake LeadsApi whose calls wait for the test to release them."""

    def __init__(self) -> None:
        self.gates = {}
        self.outcomes = {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def gate(self, lead_id: str) -> asyncio.Event:
        return self.gates.setdefault(lead_id, asyncio.Event())

    async def _call(self, lead_id: str, result):
        self.calls.append(lead_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if lead_id in self.gates:
                await self.gates[lead_id].wait()
            outcome = self.outcomes.get(lead_id)
            if isinstance(outcome, Exception):
                raise outcome
            return result
        finally:
            self.in_flight -= 1

    async def update_lead(self, lead_id, changes):
        return await self._call(lead_id, {**{"a": LEAD_A, "b": LEAD_B, "c": LEAD_C}[lead_id], **changes, "updated_at": "2025-01-02T00:00:00+00:00"})

    async def delete_lead(self, lead_id):
        return await self._call(lead_id, None)

    async def create_lead(self, data):
        return {"id": "new", **data}

    async def create_interaction(self, data):
        return {"id": "i2", **data}


class TestStateMachine:
    def test_transitions(self):
        mutation = OptimisticMutation(QueryCache(), "a", (LEADS_ROOT,))
        assert mutation.state is MutationState.IDLE

        mutation.begin().apply(lambda key, value: value)
        assert mutation.state is MutationState.APPLYING

        mutation.confirm()
        assert mutation.state is MutationState.CONFIRMED

        with pytest.raises(InvalidTransition):
            mutation.rollback(revert_entity("a"))

    def test_cannot_apply_before_begin(self):
        with pytest.raises(InvalidTransition):
            OptimisticMutation(QueryCache(), "a", (LEADS_ROOT,)).apply(lambda key, value: value)


class TestUpdate:
    def test_failed_update_restores_cache_exactly(self):
        cache = _seeded_cache()
        before = _snapshot(cache)
        api = GatedApi()
        api.outcomes["a"] = AppError.database()
        coordinator = MutationCoordinator(api, cache)

        with pytest.raises(AppError):
            asyncio.run(coordinator.update_lead("a", {"status": "won"}))

        assert _snapshot(cache) == before
        assert not coordinator.is_pending("a")

    def test_prediction_visible_while_request_in_flight(self):
        async def scenario():
            cache = _seeded_cache()
            api = GatedApi()
            gate = api.gate("a")
            coordinator = MutationCoordinator(api, cache)

            task = asyncio.ensure_future(coordinator.update_lead("a", {"status": "won"}))
            await asyncio.sleep(0)
            during = (cache.get(lead_detail_key("a"))["status"], coordinator.is_pending("a"))
            gate.set()
            await task
            return during

        assert asyncio.run(scenario()) == ("won", True)

    def test_confirmed_update_shows_server_copy(self):
        cache = _seeded_cache()
        coordinator = MutationCoordinator(GatedApi(), cache)

        result = asyncio.run(coordinator.update_lead("a", {"status": "won"}))

        assert result["status"] == "won"
        assert cache.get(lead_detail_key("a"))["status"] == "won"
        assert cache.get(lead_detail_key("a"))["updated_at"] == "2025-01-02T00:00:00+00:00"
        page = cache.get(lead_list_key())
        assert [lead["status"] for lead in page["leads"]] == ["won", "new", "new"]
        assert cache.is_stale(lead_list_key())
        assert cache.get(lead_detail_key("b")) == LEAD_B


class TestDelete:
    def test_failed_delete_restores_position_and_total(self):
        async def scenario():
            cache = _seeded_cache()
            before = _snapshot(cache)
            api = GatedApi()
            gate = api.gate("b")
            api.outcomes["b"] = AppError.network()
            coordinator = MutationCoordinator(api, cache)

            task = asyncio.ensure_future(coordinator.delete_lead("b"))
            await asyncio.sleep(0)
            page = cache.get(lead_list_key())
            during = ([lead["id"] for lead in page["leads"]], page["total"], lead_detail_key("b") in cache)
            gate.set()
            with pytest.raises(AppError):
                await task
            return before, during, _snapshot(cache)

        before, during, after = asyncio.run(scenario())

        assert during == (["a", "c"], 2, False)
        assert after == before

    def test_confirmed_delete_keeps_lead_out(self):
        cache = _seeded_cache()

        asyncio.run(MutationCoordinator(GatedApi(), cache).delete_lead("a"))

        page = cache.get(lead_list_key())
        assert [lead["id"] for lead in page["leads"]] == ["b", "c"]
        assert page["total"] == 2
        assert lead_detail_key("a") not in cache
        assert cache.is_stale(interactions_key("a"))


class TestConcurrency:
    def test_failure_does_not_undo_other_leads_success(self):
        async def scenario():
            cache = _seeded_cache()
            api = GatedApi()
            gate_a, gate_b = api.gate("a"), api.gate("b")
            api.outcomes["a"] = AppError.database()
            coordinator = MutationCoordinator(api, cache)

            task_a = asyncio.ensure_future(coordinator.update_lead("a", {"status": "lost"}))
            await asyncio.sleep(0)
            task_b = asyncio.ensure_future(coordinator.update_lead("b", {"status": "won"}))
            await asyncio.sleep(0)

            gate_b.set()
            await task_b
            gate_a.set()
            with pytest.raises(AppError):
                await task_a
            return cache

        cache = asyncio.run(scenario())

        page = cache.get(lead_list_key())
        statuses = {lead["id"]: lead["status"] for lead in page["leads"]}
        assert statuses == {"a": "new", "b": "won", "c": "new"}
        assert page["total"] == 3
        assert cache.get(lead_detail_key("a"))["status"] == "new"
        assert cache.get(lead_detail_key("b"))["status"] == "won"

    def test_failure_keeps_other_leads_confirmed_server_copy(self):
        async def scenario():
            cache = _seeded_cache()
            api = GatedApi()
            gate_a, gate_b = api.gate("a"), api.gate("b")
            api.outcomes["b"] = AppError.database()
            coordinator = MutationCoordinator(api, cache)

            task_a = asyncio.ensure_future(coordinator.update_lead("a", {"status": "contacted"}))
            await asyncio.sleep(0)
            task_b = asyncio.ensure_future(coordinator.update_lead("b", {"status": "won"}))
            await asyncio.sleep(0)

            gate_a.set()
            await task_a
            gate_b.set()
            with pytest.raises(AppError):
                await task_b
            return cache

        cache = asyncio.run(scenario())

        page = cache.get(lead_list_key())
        by_id = {lead["id"]: lead for lead in page["leads"]}
        assert by_id["a"]["status"] == "contacted"
        assert by_id["a"]["updated_at"] == "2025-01-02T00:00:00+00:00"
        assert by_id["b"] == LEAD_B
        assert cache.get(lead_detail_key("a"))["updated_at"] == "2025-01-02T00:00:00+00:00"
        assert cache.get(lead_detail_key("b")) == LEAD_B
        # The confirmed mutation's invalidation survives the other one's rollback.
        assert cache.is_stale(lead_list_key())
        assert cache.is_stale(lead_detail_key("a"))

    def test_same_lead_mutations_are_serialised(self):
        async def scenario():
            cache = _seeded_cache()
            api = GatedApi()
            gate = api.gate("a")
            coordinator = MutationCoordinator(api, cache)

            first = asyncio.ensure_future(coordinator.update_lead("a", {"status": "contacted"}))
            second = asyncio.ensure_future(coordinator.update_lead("a", {"status": "qualified"}))
            await asyncio.sleep(0)
            calls_while_blocked = list(api.calls)
            gate.set()
            await asyncio.gather(first, second)
            return calls_while_blocked, api, cache

        calls_while_blocked, api, cache = asyncio.run(scenario())

        assert calls_while_blocked == ["a"]
        assert api.max_in_flight == 1
        assert cache.get(lead_detail_key("a"))["status"] == "qualified"

    def test_locks_are_released_when_idle(self):
        cache = _seeded_cache()
        api = GatedApi()
        api.outcomes["b"] = AppError.network()
        coordinator = MutationCoordinator(api, cache)

        asyncio.run(coordinator.update_lead("a", {"status": "won"}))
        with pytest.raises(AppError):
            asyncio.run(coordinator.delete_lead("b"))

        assert coordinator._locks == {}
        assert not coordinator.is_pending("a")
        assert not coordinator.is_pending("b")


def test_begin_cancels_pending_refresh() -> None:
    async def scenario():
        cache = _seeded_cache()
        release = asyncio.Event()

        async def stale_fetch():
            await release.wait()
            return dict(LEAD_A)

        await cache.fetch(lead_detail_key("a"), stale_fetch)
        cache.invalidate(lead_detail_key("a"))
        await asyncio.sleep(0)

        mutation = OptimisticMutation(cache, "a", (LEADS_ROOT,)).begin()
        mutation.apply(predict_update("a", {"status": "won"}))
        release.set()
        await asyncio.sleep(0)
        return cache.pending_refreshes(), cache.get(lead_detail_key("a"))["status"]

    pending, status = asyncio.run(scenario())

    assert pending == []
    assert status == "won"


def test_create_invalidates_lists() -> None:
    cache = _seeded_cache()
    coordinator = MutationCoordinator(GatedApi(), cache)

    asyncio.run(coordinator.create_lead({"name": "Delta", "status": "new"}))
    asyncio.run(coordinator.create_interaction({"lead_id": "a", "type": "call", "description": "Hi"}))

    assert cache.is_stale(lead_list_key())
    assert cache.is_stale(interactions_key("a"))


def test_predictions_never_modify_the_cached_value() -> None:
    page = {"leads": [dict(LEAD_A), dict(LEAD_B)], "total": 2}
    before = copy.deepcopy(page)

    updated = predict_update("a", {"status": "won"})(lead_list_key(), page)
    removed = predict_delete("b")(lead_list_key(), page)

    assert page == before
    assert updated is not page and updated["leads"][0]["status"] == "won"
    assert removed is not page and removed["total"] == 1


def test_rollback_keeps_snapshot_staleness() -> None:
    cache = _seeded_cache()
    cache.invalidate(lead_detail_key("a"))

    mutation = OptimisticMutation(cache, "a", (LEADS_ROOT,)).begin()
    mutation.apply(predict_delete("a"))
    mutation.rollback(revert_entity("a"))

    assert cache.get(lead_detail_key("a")) == LEAD_A
    assert cache.is_stale(lead_detail_key("a"))
    assert not cache.is_stale(lead_list_key())
