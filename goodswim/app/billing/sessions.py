"""Hosted checkout and billing portal sessions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from ..entitlements.client import TeamDirectory
from ..entitlements.models import SubscriptionStatus, SubscriptionUpdate, Tier
from ..entitlements.resolver import TRIAL_LENGTH
from .errors import UpstreamError, ValidationError
from .models import CheckoutSession, PortalSession
from .prices import PriceCatalog
from .provider import PaymentProvider
from .repository import SubscriptionRepository

logger = logging.getLogger("billing")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionInitiator:
    """Creates processor-hosted sessions for a team.

    A team's processor customer is created at most once and stored before any
    checkout session references it. When two first-time checkouts race, the
    one that loses the compare-and-set adopts the stored customer id.
    """

    repository: SubscriptionRepository
    provider: PaymentProvider
    prices: PriceCatalog
    team_directory: TeamDirectory
    app_url: str = "https://goodswim.io"
    trial_length: timedelta = TRIAL_LENGTH
    clock: Callable[[], datetime] = field(default=_utcnow)

    def start_checkout(
        self,
        team_id: str,
        tier: Union[Tier, str],
        user_id: str,
        swimmer_count: int = 0,
        email: Optional[str] = None,
    ) -> CheckoutSession:
        if not team_id or not tier or not user_id:
            raise ValidationError(message="Missing required fields: team_id, tier, user_id.")
        selected = self._paid_tier(tier)
        price_id = self.prices.price_for(selected)

        customer_id = self._ensure_customer(team_id, user_id, email)

        metadata = {"team_id": team_id, "user_id": user_id, "tier": selected.value}
        session = self.provider.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=f"{self.app_url}/app?billing=success&tier={selected.value}",
            cancel_url=f"{self.app_url}/app?billing=cancelled",
            metadata=metadata,
            subscription_metadata={**metadata, "swimmer_count": str(max(0, int(swimmer_count or 0)))},
        )
        url = session.get("url")
        session_id = session.get("id")
        if not url or not session_id:
            raise UpstreamError(message="Payment processor returned an incomplete checkout session.")

        logger.info("Checkout session created session=%s team=%s tier=%s", session_id, team_id, selected.value)
        return CheckoutSession(url=str(url), session_id=str(session_id))

    def start_portal(self, team_id: str, user_id: str) -> PortalSession:
        if not team_id or not user_id:
            raise ValidationError(message="Missing required fields: team_id, user_id.")

        record = self.repository.get(team_id)
        if record is None or not record.external_customer_id:
            raise ValidationError(
                message="No billing account found for this team.",
                code="no_billing_account",
                detail={"team_id": team_id},
            )

        session = self.provider.create_portal_session(
            customer_id=record.external_customer_id,
            return_url=f"{self.app_url}/app?view=billing",
        )
        url = session.get("url")
        if not url:
            raise UpstreamError(message="Payment processor returned an incomplete portal session.")

        logger.info("Portal session created customer=%s team=%s", record.external_customer_id, team_id)
        return PortalSession(url=str(url))

    def _paid_tier(self, tier: Union[Tier, str]) -> Tier:
        try:
            selected = Tier(tier)
        except ValueError:
            selected = None
        if selected is None or not selected.is_paid:
            raise ValidationError(
                message="Invalid tier. Must be starter, pro, or club.",
                detail={"tier": str(getattr(tier, "value", tier))},
            )
        return selected

    def _ensure_customer(self, team_id: str, user_id: str, email: Optional[str]) -> str:
        existing = self.repository.get(team_id)
        if existing is not None and existing.external_customer_id:
            return existing.external_customer_id

        defaults = self._new_record_defaults(team_id)
        created = self.provider.create_customer(team_id=team_id, user_id=user_id, email=email)
        claimed = self.repository.claim_customer_id(team_id, created, defaults=defaults)
        if claimed != created:
            logger.warning(
                "Customer %s for team %s lost a concurrent checkout; using %s (orphaned customer left at processor)",
                created,
                team_id,
                claimed,
            )
        return claimed

    def _new_record_defaults(self, team_id: str) -> SubscriptionUpdate:
        created_at = self.team_directory.team_created_at(team_id) or self.clock()
        return SubscriptionUpdate(
            status=SubscriptionStatus.INCOMPLETE,
            tier=Tier.TRIAL,
            trial_end=created_at + self.trial_length,
        )


__all__ = ["SessionInitiator"]
