"""Cache abstractions for entitlement snapshots."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterable, Optional, Protocol, Set

from .state import EntitlementState


class EntitlementCache(Protocol):
    """Protocol describing cache operations used by the entitlement client."""

    def get(self, team_id: str, now: Optional[datetime] = None) -> Optional[EntitlementState]:
        ...

    def set(self, state: EntitlementState, expires_at: datetime) -> None:
        ...

    def invalidate(self, team_ids: Iterable[str]) -> None:
        ...

    def team_ids(self) -> Set[str]:
        ...


@dataclass
class _CacheEntry:
    value: EntitlementState
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class InMemoryEntitlementCache:
    """Process-local snapshot cache keyed by team id."""

    def __init__(self) -> None:
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = Lock()

    def get(self, team_id: str, now: Optional[datetime] = None) -> Optional[EntitlementState]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            entry = self._entries.get(team_id)
            if not entry:
                return None
            if entry.is_expired(now):
                self._entries.pop(team_id, None)
                return None
            return entry.value

    def set(self, state: EntitlementState, expires_at: datetime) -> None:
        with self._lock:
            self._entries[state.team_id] = _CacheEntry(value=state, expires_at=expires_at)

    def invalidate(self, team_ids: Iterable[str]) -> None:
        with self._lock:
            for team_id in team_ids:
                self._entries.pop(team_id, None)

    def team_ids(self) -> Set[str]:
        with self._lock:
            return set(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
