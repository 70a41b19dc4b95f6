"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import CheckoutSession, PortalSession
from ..entitlements import EntitlementState, LoadState, UNLIMITED


class CheckoutRequest(BaseModel):
    team_id: str = Field(alias="teamId", min_length=1)
    tier: str = Field(min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    swimmer_count: int = Field(alias="swimmerCount", default=0, ge=0)
    email: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class CheckoutResponse(BaseModel):
    url: str
    session_id: str

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutResponse":
        return cls(url=session.url, session_id=session.session_id)


class PortalRequest(BaseModel):
    team_id: str = Field(alias="teamId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class PortalResponse(BaseModel):
    url: str

    @classmethod
    def from_session(cls, session: PortalSession) -> "PortalResponse":
        return cls(url=session.url)


class WebhookAck(BaseModel):
    received: bool = True


class EntitlementSummary(BaseModel):
    """Gating decisions for one team at a point in time."""

    team_id: str
    load_state: LoadState
    tier: str
    is_paid: bool
    is_trial: bool
    is_expired: bool
    trial_days_left: int
    trial_expiring_soon: bool
    swimmer_count: int
    can_add_swimmer: bool
    remaining_swimmers: Optional[int] = Field(default=None, description="None means unlimited")
    features: Dict[str, bool]
    loaded_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: EntitlementState, now: Optional[datetime] = None) -> "EntitlementSummary":
        remaining = state.remaining_swimmers(now)
        return cls(
            team_id=state.team_id,
            load_state=state.load_state,
            tier=state.tier(now).value,
            is_paid=state.is_paid(now),
            is_trial=state.is_trial(now),
            is_expired=state.is_expired(now),
            trial_days_left=state.trial_days_left(now),
            trial_expiring_soon=state.is_trial_expiring_soon(now),
            swimmer_count=state.swimmer_count,
            can_add_swimmer=state.can_add_swimmer(now),
            remaining_swimmers=None if remaining == UNLIMITED else int(remaining),
            features=state.feature_flags(now),
            loaded_at=state.loaded_at,
        )
