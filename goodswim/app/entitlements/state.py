"""Read-model snapshot of a team's entitlements and the queries over it."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Union

from .models import EffectiveTier, Feature, FeatureLimits, SubscriptionRecord, Tier
from .resolver import resolve_effective_tier

UNLIMITED = math.inf

_ONE_DAY = timedelta(days=1)
_EXPIRING_SOON_DAYS = 3


class LoadState(str, Enum):
    """Whether a snapshot reflects stored data."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class EntitlementState:
    """Cached ``{subscription, limits, swimmer_count}`` for one team.

    Every query is computed from the fields below and an optional ``now``;
    none of them perform I/O. Snapshots that are not ``READY`` report the
    trial tier but grant nothing.
    """

    team_id: str
    load_state: LoadState
    subscription: Optional[SubscriptionRecord] = None
    limits: Optional[FeatureLimits] = None
    swimmer_count: int = 0
    loaded_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def uninitialized(cls, team_id: str) -> "EntitlementState":
        return cls(team_id=team_id, load_state=LoadState.UNINITIALIZED)

    @classmethod
    def failed(cls, team_id: str, error: str) -> "EntitlementState":
        return cls(team_id=team_id, load_state=LoadState.FAILED, error=error)

    @property
    def is_loaded(self) -> bool:
        return self.load_state == LoadState.READY

    def effective_tier(self, now: Optional[datetime] = None) -> Optional[EffectiveTier]:
        """Resolved tier, or ``None`` when the snapshot holds no data."""

        if not self.is_loaded:
            return None
        return resolve_effective_tier(self.subscription, _now(now))

    def tier(self, now: Optional[datetime] = None) -> EffectiveTier:
        return self.effective_tier(now) or EffectiveTier.TRIAL

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.effective_tier(now) == EffectiveTier.EXPIRED

    def is_paid(self, now: Optional[datetime] = None) -> bool:
        return self.effective_tier(now) in {EffectiveTier.STARTER, EffectiveTier.PRO, EffectiveTier.CLUB}

    def is_trial(self, now: Optional[datetime] = None) -> bool:
        if not self.is_loaded:
            return True
        return self._nominal_tier() == Tier.TRIAL and not self.is_expired(now)

    def has_feature(self, feature: Union[Feature, str], now: Optional[datetime] = None) -> bool:
        if self.limits is None:
            return False
        if self.effective_tier(now) in (None, EffectiveTier.EXPIRED):
            return False
        try:
            resolved = Feature(feature)
        except ValueError:
            return False
        return self.limits.flag(resolved)

    def can_add_swimmer(self, now: Optional[datetime] = None) -> bool:
        if self.limits is None:
            return False
        if self.effective_tier(now) in (None, EffectiveTier.EXPIRED):
            return False
        if self.limits.unlimited_swimmers:
            return True
        return self.swimmer_count < self.limits.max_swimmers

    def remaining_swimmers(self, now: Optional[datetime] = None) -> Union[int, float]:
        """Seats left under the swimmer ceiling; :data:`UNLIMITED` when uncapped."""

        if self.limits is None:
            return 0
        if self.effective_tier(now) in (None, EffectiveTier.EXPIRED):
            return 0
        if self.limits.unlimited_swimmers:
            return UNLIMITED
        return max(0, self.limits.max_swimmers - self.swimmer_count)

    def trial_days_left(self, now: Optional[datetime] = None) -> int:
        subscription = self.subscription
        if subscription is None or self._nominal_tier() != Tier.TRIAL:
            return 0
        if subscription.trial_end is None:
            return 0
        remaining = subscription.trial_end - _now(now)
        return max(0, math.ceil(remaining / _ONE_DAY))

    def is_trial_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        if self._nominal_tier() != Tier.TRIAL:
            return False
        return 1 <= self.trial_days_left(now) <= _EXPIRING_SOON_DAYS

    def feature_flags(self, now: Optional[datetime] = None) -> Dict[str, bool]:
        return {feature.value: self.has_feature(feature, now) for feature in Feature}

    def _nominal_tier(self) -> Optional[Tier]:
        if self.subscription is None:
            return None
        return self.subscription.tier or Tier.TRIAL


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


__all__ = ["EntitlementState", "LoadState", "UNLIMITED"]
