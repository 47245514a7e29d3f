"""IncidentLifecycleManager: creation, validated transitions, escalation."""

from __future__ import annotations

import asyncio
import secrets
import time
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from incident_engine.core.types import (
    Incident,
    IncidentEvent,
    IncidentEventType,
    IncidentStatus,
    IncidentUpdate,
    Priority,
    Severity,
    most_urgent,
    next_severity,
    priority_for_severity,
)
from incident_engine.incidents.exceptions import (
    IncidentError,
    IncidentNotFoundError,
    InvalidTransitionError,
    PersistenceError,
    StaleIncidentError,
)
from incident_engine.incidents.state_machine import (
    INITIAL_STATUS,
    default_message,
    validate_transition,
)
from incident_engine.incidents.store import IncidentStore

logger = structlog.stdlib.get_logger()

IncidentEventCallback = Callable[[IncidentEvent], Awaitable[None] | None]
StatusRecomputeFn = Callable[[], Awaitable[object] | object]

# Escalation never leaves an incident less urgent than this.
ESCALATION_PRIORITY_FLOOR = Priority.P2


def generate_incident_id(now: float) -> str:
    """Readable, collision-resistant id, e.g. ``inc-2026-3f9a0c12be41``."""
    year = datetime.fromtimestamp(now, tz=timezone.utc).year
    return f"inc-{year}-{secrets.token_hex(6)}"


class IncidentLifecycleManager:
    """Owns the incident status state machine and its audit trail.

    Every status change writes exactly one IncidentUpdate carrying the new
    status. Mutations on one incident are serialized by a per-incident lock,
    and the store's compare-and-set rejects writers that raced past it.

    Usage::

        manager = IncidentLifecycleManager(store, recompute_status=tracker.recompute)
        manager.on_event(dispatcher.on_incident_event)

        incident = await manager.create_incident(
            "checkout-api down", "...", Severity.CRITICAL, ["checkout-api"], "alice",
        )
        await manager.transition(incident.id, IncidentStatus.IDENTIFIED, "alice", "DB failover")
    """

    def __init__(
        self,
        store: IncidentStore,
        recompute_status: StatusRecomputeFn | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._recompute_status = recompute_status
        self._clock = clock
        self._callbacks: list[IncidentEventCallback] = []
        # Entries vanish once no coroutine holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._global_lock = asyncio.Lock()

    @property
    def store(self) -> IncidentStore:
        return self._store

    def on_event(self, callback: IncidentEventCallback) -> None:
        """Register a callback for incident lifecycle events."""
        self._callbacks.append(callback)

    async def _emit(self, event: IncidentEvent) -> None:
        """Dispatch an incident event to all registered callbacks."""
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "incident_event_callback_error",
                    event_type=event.event_type,
                    incident_id=event.incident_id,
                )

    async def _get_lock(self, incident_id: str) -> asyncio.Lock:
        async with self._global_lock:
            lock = self._locks.get(incident_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[incident_id] = lock
            return lock

    async def _after_change(self) -> None:
        """Best-effort system status recomputation; never fails the mutation."""
        if self._recompute_status is None:
            return
        try:
            result = self._recompute_status()
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception("system_status_recompute_failed")

    async def _append(self, incident_id: str, update: IncidentUpdate) -> IncidentUpdate:
        try:
            return await self._store.append_update(incident_id, update)
        except IncidentError:
            raise
        except Exception as exc:
            logger.error(
                "incident_update_append_failed",
                incident_id=incident_id,
                status=update.status,
                error=str(exc),
            )
            raise PersistenceError(
                f"Failed to append update to incident {incident_id}: {exc}",
                incident_id=incident_id,
            ) from exc

    async def _discard(self, incident_id: str) -> bool:
        """Delete an incident whose first update failed. False if that fails too."""
        try:
            await self._store.delete(incident_id)
        except Exception as exc:
            logger.error("incident_discard_failed", incident_id=incident_id, error=str(exc))
            return False
        logger.warning("incident_discarded", incident_id=incident_id)
        return True

    async def _revert_status(
        self, incident_id: str, applied: IncidentStatus, previous: IncidentStatus,
    ) -> bool:
        """Undo a status change whose update failed. False if that fails too."""
        try:
            await self._store.revert_status(incident_id, applied, previous)
        except Exception as exc:
            logger.error(
                "incident_status_revert_failed",
                incident_id=incident_id,
                status=applied,
                previous=previous,
                error=str(exc),
            )
            return False
        logger.warning(
            "incident_status_reverted",
            incident_id=incident_id,
            status=applied,
            previous=previous,
        )
        return True

    async def _require(self, incident_id: str) -> Incident:
        try:
            incident = await self._store.get(incident_id)
        except Exception as exc:
            raise PersistenceError(
                f"Failed to load incident {incident_id}: {exc}",
                incident_id=incident_id,
            ) from exc
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    # ── Queries ──────────────────────────────────────────────────

    async def get_incident(self, incident_id: str) -> Incident:
        return await self._require(incident_id)

    async def list_updates(self, incident_id: str) -> list[IncidentUpdate]:
        await self._require(incident_id)
        return await self._store.list_updates(incident_id)

    # ── Mutations ────────────────────────────────────────────────

    async def create_incident(
        self,
        title: str,
        description: str,
        severity: Severity,
        affected_targets: list[str],
        reporter_id: str,
        detection_rule_id: str | None = None,
    ) -> Incident:
        """Open a new incident in INVESTIGATING with priority derived from severity."""
        if not title.strip():
            raise ValueError("Incident title is required")
        if not affected_targets:
            raise ValueError("At least one affected target is required")
        if not reporter_id:
            raise ValueError("Reporter id is required")

        now = self._clock()
        incident = Incident(
            id=generate_incident_id(now),
            title=title,
            description=description,
            status=INITIAL_STATUS,
            severity=severity,
            priority=priority_for_severity(severity),
            affected_targets=list(affected_targets),
            reporter_id=reporter_id,
            detection_rule_id=detection_rule_id,
            created_at=now,
        )

        try:
            stored = await self._store.create(incident)
        except Exception as exc:
            logger.error(
                "incident_create_failed",
                title=title,
                targets=affected_targets,
                error=str(exc),
            )
            raise PersistenceError(
                f"Failed to create incident: {exc}",
                incident_id=incident.id,
            ) from exc

        # An incident never exists without its first update. If the delete
        # undoing it also fails, the incident is announced anyway so a stored
        # incident always reaches its listeners.
        append_error: IncidentError | None = None
        try:
            await self._append(stored.id, IncidentUpdate(
                incident_id=stored.id,
                status=INITIAL_STATUS,
                description=f"Incident reported: {title}",
                actor_id=reporter_id,
                created_at=now,
            ))
        except IncidentError as exc:
            if await self._discard(stored.id):
                raise
            append_error = exc

        logger.info(
            "incident_created",
            incident_id=stored.id,
            severity=stored.severity,
            priority=stored.priority,
            targets=stored.affected_targets,
            rule_id=detection_rule_id,
        )
        await self._after_change()
        await self._emit(IncidentEvent(
            event_type=IncidentEventType.INCIDENT_CREATED,
            incident_id=stored.id,
            incident=stored,
            new_status=stored.status,
            new_severity=stored.severity,
            actor_id=reporter_id,
            timestamp=now,
        ))
        if append_error is not None:
            raise append_error
        return stored

    async def transition(
        self,
        incident_id: str,
        new_status: IncidentStatus,
        actor_id: str,
        message: str | None = None,
    ) -> Incident:
        """Move an incident along a valid edge and record the change.

        Raises:
            IncidentNotFoundError: unknown incident.
            InvalidTransitionError: ``current → new_status`` is not allowed,
                including when a concurrent writer changed the status first.
            PersistenceError: the store failed.
        """
        lock = await self._get_lock(incident_id)
        async with lock:
            current = (await self._require(incident_id)).status
            validate_transition(current, new_status)

            now = self._clock()
            resolved_at = now if new_status == IncidentStatus.RESOLVED else None
            try:
                updated = await self._store.compare_and_set_status(
                    incident_id, current, new_status, resolved_at,
                )
            except StaleIncidentError as exc:
                raise InvalidTransitionError(exc.actual, new_status) from exc
            except IncidentError:
                raise
            except Exception as exc:
                raise PersistenceError(
                    f"Failed to update status of incident {incident_id}: {exc}",
                    incident_id=incident_id,
                ) from exc

            # A status change never stands without its update. If the revert
            # also fails, the change is announced before the error surfaces.
            append_error: IncidentError | None = None
            try:
                await self._append(incident_id, IncidentUpdate(
                    incident_id=incident_id,
                    status=new_status,
                    description=message or default_message(new_status),
                    actor_id=actor_id,
                    created_at=now,
                ))
            except IncidentError as exc:
                if await self._revert_status(incident_id, new_status, current):
                    raise
                append_error = exc

        logger.info(
            "incident_status_changed",
            incident_id=incident_id,
            previous=current,
            status=new_status,
            actor_id=actor_id,
        )
        await self._after_change()
        await self._emit(IncidentEvent(
            event_type=IncidentEventType.INCIDENT_STATUS_CHANGED,
            incident_id=incident_id,
            incident=updated,
            previous_status=current,
            new_status=new_status,
            actor_id=actor_id,
            reason=message or "",
            timestamp=now,
        ))
        if append_error is not None:
            raise append_error
        return updated

    async def resolve(self, incident_id: str, actor_id: str, message: str) -> Incident:
        """Shortcut for a transition to RESOLVED with a resolution note."""
        return await self.transition(
            incident_id,
            IncidentStatus.RESOLVED,
            actor_id,
            f"Incident resolved: {message}",
        )

    async def escalate(self, incident_id: str, actor_id: str, reason: str) -> Incident:
        """Raise severity one step and recompute priority (at least P2).

        Status is left unchanged.
        """
        lock = await self._get_lock(incident_id)
        async with lock:
            incident = await self._require(incident_id)
            severity = next_severity(incident.severity)
            priority = most_urgent(
                priority_for_severity(severity), ESCALATION_PRIORITY_FLOOR,
            )
            try:
                updated = await self._store.update_severity(incident_id, severity, priority)
            except IncidentError:
                raise
            except Exception as exc:
                raise PersistenceError(
                    f"Failed to escalate incident {incident_id}: {exc}",
                    incident_id=incident_id,
                ) from exc

            now = self._clock()
            await self._append(incident_id, IncidentUpdate(
                incident_id=incident_id,
                description=f"Incident escalated to {severity} severity. Reason: {reason}",
                actor_id=actor_id,
                created_at=now,
            ))

        logger.warning(
            "incident_escalated",
            incident_id=incident_id,
            severity=severity,
            priority=priority,
            actor_id=actor_id,
        )
        await self._after_change()
        await self._emit(IncidentEvent(
            event_type=IncidentEventType.INCIDENT_ESCALATED,
            incident_id=incident_id,
            incident=updated,
            new_severity=severity,
            actor_id=actor_id,
            reason=reason,
            timestamp=now,
        ))
        return updated

    async def add_update(self, incident_id: str, actor_id: str, description: str) -> IncidentUpdate:
        """Append a status-less note to an incident's audit trail."""
        if not description.strip():
            raise ValueError("Update description is required")
        await self._require(incident_id)
        return await self._append(incident_id, IncidentUpdate(
            incident_id=incident_id,
            description=description,
            actor_id=actor_id,
            created_at=self._clock(),
        ))
