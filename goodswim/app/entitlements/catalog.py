"""Static feature limit catalogue, one record per tier."""
from __future__ import annotations

from typing import Mapping

from .models import EffectiveTier, FeatureLimits, Tier

TRIAL_LIMITS = FeatureLimits(
    tier=Tier.TRIAL,
    max_swimmers=25,
    max_coaches=1,
    ai_video_analysis=True,
    ai_video_monthly_limit=2,
    sd3_import=True,
    csv_import=True,
    practice_builder=True,
    parent_portal=True,
)

STARTER_LIMITS = FeatureLimits(
    tier=Tier.STARTER,
    max_swimmers=None,
    max_coaches=1,
    parent_portal=True,
)

PRO_LIMITS = FeatureLimits(
    tier=Tier.PRO,
    max_swimmers=None,
    max_coaches=3,
    sd3_import=True,
    csv_import=True,
    practice_builder=True,
    trophy_case=True,
    push_notifications=True,
    meet_reports=True,
    parent_portal=True,
)

CLUB_LIMITS = FeatureLimits(
    tier=Tier.CLUB,
    max_swimmers=None,
    max_coaches=None,
    ai_video_analysis=True,
    ai_video_monthly_limit=10,
    sd3_import=True,
    csv_import=True,
    practice_builder=True,
    trophy_case=True,
    push_notifications=True,
    meet_reports=True,
    parent_portal=True,
    ai_chat=True,
    advanced_analytics=True,
    custom_branding=True,
    priority_support=True,
)

FEATURE_LIMIT_CATALOG: Mapping[Tier, FeatureLimits] = {
    Tier.TRIAL: TRIAL_LIMITS,
    Tier.STARTER: STARTER_LIMITS,
    Tier.PRO: PRO_LIMITS,
    Tier.CLUB: CLUB_LIMITS,
}


def limits_for(
    effective_tier: EffectiveTier,
    catalog: Mapping[Tier, FeatureLimits] = FEATURE_LIMIT_CATALOG,
) -> FeatureLimits:
    """Return the limit record for an effective tier.

    ``expired`` is looked up as ``trial``, the most restrictive defined tier.
    Callers still have to treat every flag as unavailable for expired teams.
    """

    lookup_tier = Tier.TRIAL if effective_tier == EffectiveTier.EXPIRED else Tier(effective_tier.value)
    try:
        return catalog[lookup_tier]
    except KeyError as exc:
        raise LookupError(f"No feature limits defined for tier: {lookup_tier.value}") from exc


__all__ = [
    "CLUB_LIMITS",
    "FEATURE_LIMIT_CATALOG",
    "PRO_LIMITS",
    "STARTER_LIMITS",
    "TRIAL_LIMITS",
    "limits_for",
]
