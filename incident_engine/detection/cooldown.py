"""Per-(rule, target) cooldown tracking with a pluggable backing store."""

from __future__ import annotations

import abc
import asyncio
import weakref
from collections.abc import Mapping

import structlog
from pydantic import BaseModel

logger = structlog.stdlib.get_logger()


class CooldownEntry(BaseModel):
    """Suppression state for one rule on one target."""

    rule_id: str
    target_id: str
    fired_at: float

    def expires_at(self, cooldown_secs: float) -> float:
        return self.fired_at + cooldown_secs

    def is_active(self, now: float, cooldown_secs: float) -> bool:
        """Active until ``now > fired_at + cooldown``."""
        return now <= self.expires_at(cooldown_secs)


class CooldownStore(abc.ABC):
    """Backing storage for cooldown entries.

    ``acquire`` must be atomic per (rule, target): of two concurrent callers
    that both see no active entry, only one may record and return True. A
    shared store (multi-instance deployments) implements this as a
    compare-and-set; the in-memory store uses a per-key lock.
    """

    @abc.abstractmethod
    async def get(self, rule_id: str, target_id: str) -> CooldownEntry | None:
        """Return the stored entry, active or not."""

    @abc.abstractmethod
    async def put(self, entry: CooldownEntry) -> None:
        """Insert or replace an entry."""

    @abc.abstractmethod
    async def acquire(
        self, rule_id: str, target_id: str, now: float, cooldown_secs: float,
    ) -> bool:
        """Record a firing at *now* unless an active entry exists. Returns True if recorded."""

    @abc.abstractmethod
    async def clear(self) -> int:
        """Remove every entry. Returns how many were removed."""

    @abc.abstractmethod
    async def count(self) -> int:
        """Number of stored entries (expired ones included until swept)."""


class InMemoryCooldownStore(CooldownStore):
    """Process-local store. State is lost on restart."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CooldownEntry] = {}
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._global_lock = asyncio.Lock()

    async def _get_lock(self, key: tuple[str, str]) -> asyncio.Lock:
        """Get or create the lock guarding one (rule, target) key."""
        async with self._global_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    async def get(self, rule_id: str, target_id: str) -> CooldownEntry | None:
        return self._entries.get((rule_id, target_id))

    async def put(self, entry: CooldownEntry) -> None:
        self._entries[(entry.rule_id, entry.target_id)] = entry

    async def acquire(
        self, rule_id: str, target_id: str, now: float, cooldown_secs: float,
    ) -> bool:
        key = (rule_id, target_id)
        lock = await self._get_lock(key)
        async with lock:
            entry = self._entries.get(key)
            if entry is not None and entry.is_active(now, cooldown_secs):
                return False
            self._entries[key] = CooldownEntry(
                rule_id=rule_id, target_id=target_id, fired_at=now,
            )
            return True

    async def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        return removed

    async def count(self) -> int:
        return len(self._entries)

    def sweep(self, now: float, cooldowns: Mapping[str, float]) -> int:
        """Drop entries that have expired. Lookups treat expired entries as absent."""
        expired = [
            key for key, entry in self._entries.items()
            if not entry.is_active(now, cooldowns.get(entry.rule_id, 0.0))
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)


class CooldownTracker:
    """Debounce state for detection rules, keyed by (rule_id, target_id).

    Cooldown durations are rule-local and supplied at construction time.
    """

    def __init__(
        self,
        cooldowns: Mapping[str, float],
        store: CooldownStore | None = None,
    ) -> None:
        self._cooldowns = dict(cooldowns)
        self._store = store or InMemoryCooldownStore()

    @property
    def store(self) -> CooldownStore:
        return self._store

    def _cooldown(self, rule_id: str) -> float:
        return self._cooldowns.get(rule_id, 0.0)

    async def is_suppressed(self, rule_id: str, target_id: str, now: float) -> bool:
        """True while an unexpired entry exists.

        Expired entries read as absent and are never deleted here, since a
        shared store may already hold a newer firing under the same key.
        ``InMemoryCooldownStore.sweep`` reclaims them.
        """
        entry = await self._store.get(rule_id, target_id)
        return entry is not None and entry.is_active(now, self._cooldown(rule_id))

    async def record(self, rule_id: str, target_id: str, fired_at: float) -> None:
        """Unconditionally start a cooldown at *fired_at*."""
        await self._store.put(
            CooldownEntry(rule_id=rule_id, target_id=target_id, fired_at=fired_at),
        )

    async def try_acquire(self, rule_id: str, target_id: str, now: float) -> bool:
        """Atomically check suppression and record a firing at *now*."""
        return await self._store.acquire(rule_id, target_id, now, self._cooldown(rule_id))

    async def remaining(self, rule_id: str, target_id: str, now: float) -> float:
        """Seconds of suppression left; 0 when not suppressed."""
        entry = await self._store.get(rule_id, target_id)
        if entry is None:
            return 0.0
        return max(0.0, entry.expires_at(self._cooldown(rule_id)) - now)

    async def clear(self) -> int:
        """Administrative reset of all suppression state."""
        removed = await self._store.clear()
        logger.info("cooldowns_cleared", removed=removed)
        return removed
