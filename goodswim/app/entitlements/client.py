"""Read-side entitlement client consumed by the rest of the product."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol

from .cache import EntitlementCache
from .catalog import FEATURE_LIMIT_CATALOG, limits_for
from .models import FeatureLimits, SubscriptionRecord, Tier
from .resolver import TRIAL_LENGTH, resolve_effective_tier, synthesize_trial
from .state import EntitlementState, LoadState

logger = logging.getLogger("entitlements")


class SubscriptionReader(Protocol):
    """Read access to stored subscription records."""

    def get(self, team_id: str) -> Optional[SubscriptionRecord]:
        ...


class TeamDirectory(Protocol):
    """Roster facts owned by the team management side of the product."""

    def team_created_at(self, team_id: str) -> Optional[datetime]:
        ...

    def count_swimmers(self, team_id: str) -> int:
        ...


class EntitlementClient:
    """Keeps per-team entitlement snapshots and answers gating queries.

    ``snapshot`` only reads the cache, so feature checks never wait on the
    database. ``load``/``refresh`` do the I/O and are driven either by a first
    request for a team or by the subscription change channel. Snapshots expire
    after ``ttl_seconds`` so roster changes and writes made by other processes
    are picked up; an expired snapshot reads as uninitialized.
    """

    def __init__(
        self,
        repository: SubscriptionReader,
        team_directory: TeamDirectory,
        cache: EntitlementCache,
        *,
        catalog: Mapping[Tier, FeatureLimits] = FEATURE_LIMIT_CATALOG,
        clock: Optional[Callable[[], datetime]] = None,
        trial_length: timedelta = TRIAL_LENGTH,
        ttl_seconds: int = 300,
    ) -> None:
        self._repository = repository
        self._team_directory = team_directory
        self._cache = cache
        self._catalog = catalog
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._trial_length = trial_length
        self._ttl_seconds = max(ttl_seconds, 1)

    def snapshot(self, team_id: str) -> EntitlementState:
        """Return the cached state, or an uninitialized one. Never blocks."""

        cached = self._cache.get(team_id, self._clock())
        if cached is not None:
            return cached
        return EntitlementState.uninitialized(team_id)

    def load(self, team_id: str) -> EntitlementState:
        """Return the cached state, loading it first if the team is unknown."""

        cached = self._cache.get(team_id, self._clock())
        if cached is not None:
            return cached
        return self.refresh(team_id)

    def refresh(self, team_id: str) -> EntitlementState:
        """Recompute a team's snapshot from storage."""

        try:
            state = self._compute(team_id)
        except Exception as exc:
            logger.exception("Failed to load entitlements for team %s", team_id)
            # Drop any previous snapshot so readers fall back to no access.
            self._cache.invalidate([team_id])
            return EntitlementState.failed(team_id, str(exc))

        self._cache.set(state, state.loaded_at + timedelta(seconds=self._ttl_seconds))
        return state

    def now(self) -> datetime:
        return self._clock()

    def invalidate(self, team_id: str) -> None:
        self._cache.invalidate([team_id])

    def handle_subscription_change(self, team_id: str) -> None:
        """Change-channel listener: recompute teams that have a snapshot."""

        if team_id not in self._cache.team_ids():
            logger.debug("Ignoring subscription change for untracked team %s", team_id)
            return
        self.refresh(team_id)

    def _compute(self, team_id: str) -> EntitlementState:
        now = self._clock()
        subscription = self._repository.get(team_id)
        if subscription is None:
            created_at = self._team_directory.team_created_at(team_id) or now
            subscription = synthesize_trial(team_id, created_at, trial_length=self._trial_length)

        effective_tier = resolve_effective_tier(subscription, now)
        limits = limits_for(effective_tier, self._catalog)
        swimmer_count = self._team_directory.count_swimmers(team_id)

        logger.debug(
            "Loaded entitlements team=%s tier=%s effective=%s swimmers=%s",
            team_id,
            subscription.tier.value if subscription.tier else None,
            effective_tier.value,
            swimmer_count,
        )
        return EntitlementState(
            team_id=team_id,
            load_state=LoadState.READY,
            subscription=subscription,
            limits=limits,
            swimmer_count=swimmer_count,
            loaded_at=now,
        )


__all__ = ["EntitlementClient", "SubscriptionReader", "TeamDirectory"]
