"""Tests for IncidentLifecycleManager: creation, transitions, escalation, events."""

from __future__ import annotations

import asyncio
import gc
import itertools
import re
from unittest.mock import AsyncMock

import pytest

from incident_engine.core.types import (
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    IncidentUpdate,
    Priority,
    Severity,
)
from incident_engine.incidents.exceptions import (
    IncidentNotFoundError,
    InvalidTransitionError,
    PersistenceError,
    StaleIncidentError,
)
from incident_engine.incidents.lifecycle import IncidentLifecycleManager, generate_incident_id
from incident_engine.incidents.state_machine import VALID_TRANSITIONS
from incident_engine.incidents.store import InMemoryIncidentStore

S = IncidentStatus
T0 = 1_760_000_000.0

# Path from a fresh incident to each status.
_PATHS: dict[IncidentStatus, list[IncidentStatus]] = {
    S.INVESTIGATING: [],
    S.IDENTIFIED: [S.IDENTIFIED],
    S.MONITORING: [S.IDENTIFIED, S.MONITORING],
    S.RESOLVED: [S.RESOLVED],
}


# ── Helpers ─────────────────────────────────────────────────────


class RacingStore(InMemoryIncidentStore):
    """Store where another writer always changed the status first."""

    async def compare_and_set_status(self, incident_id, expected, new_status, resolved_at=None):  # type: ignore[override]
        raise StaleIncidentError(incident_id, expected, S.RESOLVED)


class BrokenUpdatesStore(InMemoryIncidentStore):
    """Store that fails to append updates carrying *failing_status*."""

    def __init__(self, failing_status: IncidentStatus = S.IDENTIFIED) -> None:
        super().__init__()
        self.failing_status = failing_status

    async def append_update(self, incident_id: str, update: IncidentUpdate) -> IncidentUpdate:
        if update.status == self.failing_status:
            raise ConnectionError("write timeout")
        return await super().append_update(incident_id, update)


class StuckStore(BrokenUpdatesStore):
    """Broken updates, and the writes undoing them fail as well."""

    async def delete(self, incident_id: str) -> None:
        raise ConnectionError("write timeout")

    async def revert_status(self, incident_id, applied, previous):  # type: ignore[override]
        raise ConnectionError("write timeout")


def _manager(store: InMemoryIncidentStore | None = None, **kw: object) -> IncidentLifecycleManager:
    return IncidentLifecycleManager(
        store if store is not None else InMemoryIncidentStore(),
        clock=lambda: T0,
        **kw,  # type: ignore[arg-type]
    )


async def _create(manager: IncidentLifecycleManager, severity: Severity = Severity.HIGH) -> Incident:
    return await manager.create_incident(
        title="Checkout API down",
        description="5 consecutive failures",
        severity=severity,
        affected_targets=["checkout-api"],
        reporter_id="alice",
    )


async def _at(manager: IncidentLifecycleManager, status: IncidentStatus) -> Incident:
    incident = await _create(manager)
    for step in _PATHS[status]:
        incident = await manager.transition(incident.id, step, "alice")
    return incident


# ── Creation ────────────────────────────────────────────────────


class TestCreate:
    @pytest.mark.parametrize(
        ("severity", "priority"),
        [
            (Severity.CRITICAL, Priority.P1),
            (Severity.HIGH, Priority.P2),
            (Severity.MEDIUM, Priority.P3),
            (Severity.LOW, Priority.P4),
        ],
    )
    async def test_priority_from_severity(self, severity: Severity, priority: Priority) -> None:
        incident = await _create(_manager(), severity)
        assert incident.priority == priority
        assert incident.status == S.INVESTIGATING
        assert incident.created_at == T0
        assert incident.resolved_at is None

    async def test_initial_update_written(self) -> None:
        manager = _manager()
        incident = await _create(manager)
        updates = await manager.list_updates(incident.id)
        assert len(updates) == 1
        assert updates[0].status == S.INVESTIGATING
        assert updates[0].description == "Incident reported: Checkout API down"
        assert updates[0].actor_id == "alice"

    async def test_id_format(self) -> None:
        incident = await _create(_manager())
        assert re.fullmatch(r"inc-2025-[0-9a-f]{12}", incident.id)

    def test_ids_unique(self) -> None:
        ids = {generate_incident_id(T0) for _ in range(500)}
        assert len(ids) == 500

    @pytest.mark.parametrize(
        ("title", "targets", "reporter"),
        [("  ", ["api"], "alice"), ("Down", [], "alice"), ("Down", ["api"], "")],
    )
    async def test_invalid_input_rejected(self, title: str, targets: list[str], reporter: str) -> None:
        manager = _manager()
        with pytest.raises(ValueError):
            await manager.create_incident(title, "", Severity.LOW, targets, reporter)

    async def test_store_failure_wrapped(self) -> None:
        store = InMemoryIncidentStore()
        store.create = AsyncMock(side_effect=ConnectionError("down"))  # type: ignore[method-assign]
        with pytest.raises(PersistenceError):
            await _create(_manager(store))

    async def test_first_update_failure_discards_incident(self) -> None:
        store = BrokenUpdatesStore(S.INVESTIGATING)
        manager = _manager(store)
        events: list[IncidentEvent] = []
        manager.on_event(events.append)

        with pytest.raises(PersistenceError):
            await _create(manager)

        assert store.incidents == []
        assert await store.find_open_incidents_for_target("checkout-api") == []
        assert events == []

    async def test_undiscardable_incident_still_announced(self) -> None:
        store = StuckStore(S.INVESTIGATING)
        recompute = AsyncMock()
        manager = _manager(store, recompute_status=recompute)
        events: list[IncidentEvent] = []
        manager.on_event(events.append)

        with pytest.raises(PersistenceError):
            await _create(manager)

        assert len(store.incidents) == 1
        assert [e.event_type for e in events] == [IncidentEventType.INCIDENT_CREATED]
        assert events[0].incident_id == store.incidents[0].id
        recompute.assert_awaited_once()


# ── Transitions ─────────────────────────────────────────────────


class TestTransition:
    @pytest.mark.parametrize(("current", "new"), list(itertools.product(S, S)))
    async def test_table_enforced(self, current: IncidentStatus, new: IncidentStatus) -> None:
        manager = _manager()
        incident = await _at(manager, current)
        before = len(await manager.list_updates(incident.id))

        if new in VALID_TRANSITIONS[current]:
            updated = await manager.transition(incident.id, new, "bob")
            assert updated.status == new
            assert len(await manager.list_updates(incident.id)) == before + 1
        else:
            with pytest.raises(InvalidTransitionError):
                await manager.transition(incident.id, new, "bob")
            assert (await manager.get_incident(incident.id)).status == current
            assert len(await manager.list_updates(incident.id)) == before

    async def test_monitoring_back_to_identified(self) -> None:
        manager = _manager()
        incident = await _at(manager, S.MONITORING)

        updated = await manager.transition(incident.id, S.IDENTIFIED, "bob", "issue reoccurred")

        assert updated.status == S.IDENTIFIED
        assert updated.resolved_at is None
        last = (await manager.list_updates(incident.id))[-1]
        assert last.status == S.IDENTIFIED
        assert last.description == "issue reoccurred"
        assert last.actor_id == "bob"

    async def test_default_message_used(self) -> None:
        manager = _manager()
        incident = await _create(manager)
        await manager.transition(incident.id, S.IDENTIFIED, "bob")
        last = (await manager.list_updates(incident.id))[-1]
        assert last.description == "Issue has been identified"

    async def test_resolve_sets_resolved_at(self) -> None:
        manager = _manager()
        incident = await _create(manager)

        resolved = await manager.resolve(incident.id, "bob", "rolled back deploy")

        assert resolved.status == S.RESOLVED
        assert resolved.resolved_at == T0
        last = (await manager.list_updates(incident.id))[-1]
        assert last.description == "Incident resolved: rolled back deploy"

    async def test_unknown_incident(self) -> None:
        with pytest.raises(IncidentNotFoundError):
            await _manager().transition("inc-nope", S.IDENTIFIED, "bob")

    async def test_concurrent_transitions_single_winner(self) -> None:
        manager = _manager()
        incident = await _create(manager)

        results = await asyncio.gather(
            manager.transition(incident.id, S.IDENTIFIED, "a"),
            manager.transition(incident.id, S.IDENTIFIED, "b"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)
        updates = await manager.list_updates(incident.id)
        assert [u.status for u in updates] == [S.INVESTIGATING, S.IDENTIFIED]

    async def test_lost_compare_and_set_is_invalid_transition(self) -> None:
        store = RacingStore()
        manager = _manager(store)
        incident = await _create(manager)

        with pytest.raises(InvalidTransitionError) as excinfo:
            await manager.transition(incident.id, S.IDENTIFIED, "bob")
        assert excinfo.value.current == S.RESOLVED

    async def test_update_append_failure_reverts_status(self) -> None:
        store = BrokenUpdatesStore()
        manager = _manager(store)
        events: list[IncidentEvent] = []
        manager.on_event(events.append)
        incident = await _create(manager)

        with pytest.raises(PersistenceError):
            await manager.transition(incident.id, S.IDENTIFIED, "bob")

        assert (await manager.get_incident(incident.id)).status == S.INVESTIGATING
        assert [u.status for u in await manager.list_updates(incident.id)] == [S.INVESTIGATING]
        assert [e.event_type for e in events] == [IncidentEventType.INCIDENT_CREATED]

        # Retrying after the store recovers succeeds.
        store.failing_status = S.MONITORING
        updated = await manager.transition(incident.id, S.IDENTIFIED, "bob")
        assert updated.status == S.IDENTIFIED
        assert [u.status for u in await manager.list_updates(incident.id)] == [
            S.INVESTIGATING, S.IDENTIFIED,
        ]

    async def test_failed_resolve_leaves_incident_open(self) -> None:
        manager = _manager(BrokenUpdatesStore(S.RESOLVED))
        incident = await _create(manager)

        with pytest.raises(PersistenceError):
            await manager.resolve(incident.id, "bob", "rolled back deploy")

        stored = await manager.get_incident(incident.id)
        assert stored.status == S.INVESTIGATING
        assert stored.resolved_at is None
        assert [i.id for i in await manager.store.find_open_incidents()] == [incident.id]

    async def test_unrevertable_change_still_announced(self) -> None:
        recompute = AsyncMock()
        manager = _manager(StuckStore(), recompute_status=recompute)
        events: list[IncidentEvent] = []
        manager.on_event(events.append)
        incident = await _create(manager)

        with pytest.raises(PersistenceError):
            await manager.transition(incident.id, S.IDENTIFIED, "bob")

        assert (await manager.get_incident(incident.id)).status == S.IDENTIFIED
        assert events[-1].event_type == IncidentEventType.INCIDENT_STATUS_CHANGED
        assert events[-1].new_status == S.IDENTIFIED
        assert recompute.await_count == 2


# ── Escalation ──────────────────────────────────────────────────


class TestEscalate:
    @pytest.mark.parametrize(
        ("start", "severity", "priority"),
        [
            (Severity.LOW, Severity.MEDIUM, Priority.P2),
            (Severity.MEDIUM, Severity.HIGH, Priority.P2),
            (Severity.HIGH, Severity.CRITICAL, Priority.P1),
            (Severity.CRITICAL, Severity.CRITICAL, Priority.P1),
        ],
    )
    async def test_ladder(self, start: Severity, severity: Severity, priority: Priority) -> None:
        manager = _manager()
        incident = await _create(manager, start)

        escalated = await manager.escalate(incident.id, "bob", "customer reports")

        assert escalated.severity == severity
        assert escalated.priority == priority
        assert escalated.status == incident.status

    async def test_escalation_update(self) -> None:
        manager = _manager()
        incident = await _create(manager, Severity.MEDIUM)
        await manager.escalate(incident.id, "bob", "checkout revenue impact")

        last = (await manager.list_updates(incident.id))[-1]
        assert last.status is None
        assert last.description == (
            "Incident escalated to high severity. Reason: checkout revenue impact"
        )


# ── Notes ───────────────────────────────────────────────────────


class TestAddUpdate:
    async def test_note_without_status(self) -> None:
        manager = _manager()
        incident = await _create(manager)
        update = await manager.add_update(incident.id, "bob", "Paged the DB team")
        assert update.status is None
        assert (await manager.get_incident(incident.id)).status == S.INVESTIGATING

    async def test_unknown_incident(self) -> None:
        with pytest.raises(IncidentNotFoundError):
            await _manager().add_update("inc-nope", "bob", "hello")

    async def test_empty_note_rejected(self) -> None:
        manager = _manager()
        incident = await _create(manager)
        with pytest.raises(ValueError):
            await manager.add_update(incident.id, "bob", "   ")


# ── Events & side effects ───────────────────────────────────────


class TestEvents:
    async def test_events_emitted(self) -> None:
        manager = _manager()
        events: list[IncidentEvent] = []
        manager.on_event(events.append)

        incident = await _create(manager)
        await manager.transition(incident.id, S.IDENTIFIED, "bob")
        await manager.escalate(incident.id, "bob", "spreading")

        assert [e.event_type for e in events] == [
            IncidentEventType.INCIDENT_CREATED,
            IncidentEventType.INCIDENT_STATUS_CHANGED,
            IncidentEventType.INCIDENT_ESCALATED,
        ]
        assert events[1].previous_status == S.INVESTIGATING
        assert events[1].new_status == S.IDENTIFIED
        assert events[1].actor_id == "bob"
        assert events[2].new_severity == Severity.CRITICAL

    async def test_async_callback_awaited(self) -> None:
        manager = _manager()
        callback = AsyncMock()
        manager.on_event(callback)
        await _create(manager)
        callback.assert_awaited_once()

    async def test_callback_error_does_not_fail_mutation(self) -> None:
        manager = _manager()

        def bad(event: IncidentEvent) -> None:
            raise RuntimeError("listener crashed")

        manager.on_event(bad)
        incident = await _create(manager)
        assert incident.status == S.INVESTIGATING

    async def test_recompute_called_after_each_change(self) -> None:
        recompute = AsyncMock()
        manager = _manager(recompute_status=recompute)
        incident = await _create(manager)
        await manager.transition(incident.id, S.RESOLVED, "bob")
        assert recompute.await_count == 2

    async def test_recompute_failure_is_best_effort(self) -> None:
        recompute = AsyncMock(side_effect=RuntimeError("status service down"))
        manager = _manager(recompute_status=recompute)

        incident = await _create(manager)
        resolved = await manager.transition(incident.id, S.RESOLVED, "bob")

        assert resolved.status == S.RESOLVED
        assert (await manager.get_incident(incident.id)).status == S.RESOLVED


# ── Locks ───────────────────────────────────────────────────────


class TestLocks:
    async def test_locks_released_after_use(self) -> None:
        manager = _manager()
        incident = await _create(manager)
        await manager.transition(incident.id, S.IDENTIFIED, "bob")
        await manager.escalate(incident.id, "bob", "spreading")
        await manager.resolve(incident.id, "bob", "fixed")

        gc.collect()
        assert len(manager._locks) == 0
