"""Result models returned by the billing flows."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .events import BillingEventKind


class DispatchOutcome(str, Enum):
    """What a webhook did to stored state."""

    APPLIED = "applied"
    IGNORED = "ignored"
    LOOKUP_MISS = "lookup_miss"


class DispatchResult(BaseModel):
    """Outcome of routing one webhook event.

    ``kind`` is ``None`` for event types the dispatcher does not model.
    """

    event_id: Optional[str] = None
    event_type: Optional[str] = None
    kind: Optional[BillingEventKind] = None
    outcome: DispatchOutcome = DispatchOutcome.IGNORED
    team_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def applied(self) -> bool:
        return self.outcome == DispatchOutcome.APPLIED


class CheckoutSession(BaseModel):
    """Hosted checkout page created for a team."""

    url: str
    session_id: str

    model_config = ConfigDict(frozen=True)


class PortalSession(BaseModel):
    """Hosted self-service billing page for a team's customer."""

    url: str

    model_config = ConfigDict(frozen=True)


__all__ = ["CheckoutSession", "DispatchOutcome", "DispatchResult", "PortalSession"]
