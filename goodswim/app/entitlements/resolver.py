"""Effective tier resolution.

Everything here is pure: the same subscription and clock reading always give
the same answer, and nothing touches storage or the network.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .models import EffectiveTier, SubscriptionRecord, SubscriptionStatus, Tier

TRIAL_LENGTH = timedelta(days=14)


def synthesize_trial(
    team_id: str,
    trial_start: datetime,
    *,
    trial_length: timedelta = TRIAL_LENGTH,
) -> SubscriptionRecord:
    """Build the virtual trial record used for teams without a stored subscription."""

    return SubscriptionRecord(
        team_id=team_id,
        status=SubscriptionStatus.TRIALING,
        tier=Tier.TRIAL,
        trial_end=trial_start + trial_length,
        created_at=trial_start,
        updated_at=trial_start,
    )


def resolve_effective_tier(
    subscription: Optional[SubscriptionRecord],
    now: datetime,
) -> EffectiveTier:
    """Return the tier a team may be gated on at ``now``.

    A missing subscription is a fresh trial. Payment failure statuses win over
    the nominal tier, so a canceled record whose tier was reset to ``trial``
    without a ``trial_end`` still resolves to ``expired``.
    """

    if subscription is None:
        subscription = synthesize_trial("", now)

    if subscription.has_payment_failure:
        return EffectiveTier.EXPIRED

    base = subscription.tier or Tier.TRIAL
    if base == Tier.TRIAL and subscription.trial_end is not None and subscription.trial_end < now:
        return EffectiveTier.EXPIRED

    return EffectiveTier.from_tier(base)


__all__ = ["TRIAL_LENGTH", "resolve_effective_tier", "synthesize_trial"]
