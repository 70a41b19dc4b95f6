"""Tier resolution, feature limits and the per-team entitlement snapshot."""

from .cache import EntitlementCache, InMemoryEntitlementCache
from .catalog import FEATURE_LIMIT_CATALOG, limits_for
from .client import EntitlementClient, SubscriptionReader, TeamDirectory
from .models import (
    PAID_TIERS,
    EffectiveTier,
    Feature,
    FeatureLimits,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionUpdate,
    Tier,
)
from .resolver import TRIAL_LENGTH, resolve_effective_tier, synthesize_trial
from .state import UNLIMITED, EntitlementState, LoadState

__all__ = [
    "FEATURE_LIMIT_CATALOG",
    "PAID_TIERS",
    "TRIAL_LENGTH",
    "UNLIMITED",
    "EffectiveTier",
    "EntitlementCache",
    "EntitlementClient",
    "EntitlementState",
    "Feature",
    "FeatureLimits",
    "InMemoryEntitlementCache",
    "LoadState",
    "SubscriptionReader",
    "SubscriptionRecord",
    "SubscriptionStatus",
    "SubscriptionUpdate",
    "TeamDirectory",
    "Tier",
    "limits_for",
    "resolve_effective_tier",
    "synthesize_trial",
]
