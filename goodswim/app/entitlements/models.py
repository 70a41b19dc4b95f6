"""Domain models for subscriptions, tiers and feature limits."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Tier(str, Enum):
    """Nominal plan names, independent of payment health."""

    TRIAL = "trial"
    STARTER = "starter"
    PRO = "pro"
    CLUB = "club"

    @property
    def is_paid(self) -> bool:
        return self in PAID_TIERS


PAID_TIERS = frozenset({Tier.STARTER, Tier.PRO, Tier.CLUB})


class EffectiveTier(str, Enum):
    """Derived gating tier. Never persisted."""

    TRIAL = "trial"
    STARTER = "starter"
    PRO = "pro"
    CLUB = "club"
    EXPIRED = "expired"

    @classmethod
    def from_tier(cls, tier: Tier) -> "EffectiveTier":
        return cls(tier.value)


class SubscriptionStatus(str, Enum):
    """Lifecycle status reported by the payment processor."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"


# Statuses that always revoke access, whatever the nominal tier says.
PAYMENT_FAILURE_STATUSES = frozenset(
    {SubscriptionStatus.CANCELED, SubscriptionStatus.UNPAID, SubscriptionStatus.PAST_DUE}
)


class Feature(str, Enum):
    """Closed set of boolean capability flags carried by :class:`FeatureLimits`."""

    AI_VIDEO_ANALYSIS = "ai_video_analysis"
    SD3_IMPORT = "sd3_import"
    CSV_IMPORT = "csv_import"
    PRACTICE_BUILDER = "practice_builder"
    TROPHY_CASE = "trophy_case"
    PUSH_NOTIFICATIONS = "push_notifications"
    MEET_REPORTS = "meet_reports"
    PARENT_PORTAL = "parent_portal"
    AI_CHAT = "ai_chat"
    ADVANCED_ANALYTICS = "advanced_analytics"
    CUSTOM_BRANDING = "custom_branding"
    PRIORITY_SUPPORT = "priority_support"


class SubscriptionRecord(BaseModel):
    """The single stored subscription row belonging to a team."""

    team_id: str
    status: SubscriptionStatus = SubscriptionStatus.TRIALING
    tier: Optional[Tier] = Tier.TRIAL
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    external_price_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def has_payment_failure(self) -> bool:
        return self.status in PAYMENT_FAILURE_STATUSES


class SubscriptionUpdate(BaseModel):
    """Partial write applied to a subscription record.

    Only fields that were explicitly provided are written, so a handler that
    sets ``status`` alone leaves every other column untouched.
    """

    status: Optional[SubscriptionStatus] = None
    tier: Optional[Tier] = None
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    external_price_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def changes(self) -> Dict[str, object]:
        """Return only the explicitly provided fields."""

        return self.model_dump(exclude_unset=True)


class FeatureLimits(BaseModel):
    """Static capability and ceiling record for one tier."""

    tier: Tier
    max_swimmers: Optional[int] = Field(default=None, ge=0)
    max_coaches: Optional[int] = Field(default=None, ge=0)
    ai_video_analysis: bool = False
    ai_video_monthly_limit: int = Field(default=0, ge=0)
    sd3_import: bool = False
    csv_import: bool = False
    practice_builder: bool = False
    trophy_case: bool = False
    push_notifications: bool = False
    meet_reports: bool = False
    parent_portal: bool = False
    ai_chat: bool = False
    advanced_analytics: bool = False
    custom_branding: bool = False
    priority_support: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def unlimited_swimmers(self) -> bool:
        return self.max_swimmers is None

    def flag(self, feature: Feature) -> bool:
        return bool(getattr(self, feature.value))

    def to_flags(self) -> Dict[str, bool]:
        return {feature.value: self.flag(feature) for feature in Feature}
