"""Routes typed billing events to subscription writes."""
from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional

from ..entitlements.models import SubscriptionRecord, SubscriptionStatus, SubscriptionUpdate, Tier
from .errors import ValidationError
from .events import (
    BillingEvent,
    BillingEventKind,
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionDeleted,
    SubscriptionObject,
    SubscriptionUpdated,
)
from .models import DispatchOutcome, DispatchResult
from .prices import PriceCatalog
from .provider import PaymentProvider
from .repository import SubscriptionRepository

logger = logging.getLogger("billing")

EventHandler = Callable[[BillingEvent], DispatchResult]


def _paid_tier(raw: Optional[str]) -> Optional[Tier]:
    try:
        tier = Tier(str(raw))
    except ValueError:
        return None
    return tier if tier.is_paid else None


def _result(event: BillingEvent, outcome: DispatchOutcome, team_id: Optional[str] = None) -> DispatchResult:
    return DispatchResult(
        event_id=event.event_id,
        event_type=event.kind.value,
        kind=event.kind,
        outcome=outcome,
        team_id=team_id,
    )


class WebhookDispatcher:
    """Applies each supported event kind to the subscription repository.

    Every handler writes at most one record with a single upsert; there is
    no ordering between events and no de-duplication of event ids. Replaying
    the same event writes the same values again.
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        provider: PaymentProvider,
        prices: PriceCatalog,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._prices = prices
        self._handlers = self._handler_table()
        missing = [kind.value for kind in BillingEventKind if kind not in self._handlers]
        if missing:
            raise RuntimeError(f"No webhook handler registered for: {', '.join(missing)}")

    def _handler_table(self) -> Mapping[BillingEventKind, EventHandler]:
        return {
            BillingEventKind.CHECKOUT_COMPLETED: self._checkout_completed,
            BillingEventKind.SUBSCRIPTION_UPDATED: self._subscription_updated,
            BillingEventKind.SUBSCRIPTION_DELETED: self._subscription_deleted,
            BillingEventKind.INVOICE_PAYMENT_SUCCEEDED: self._invoice_payment_succeeded,
            BillingEventKind.INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }

    def dispatch(self, event: BillingEvent) -> DispatchResult:
        result = self._handlers[event.kind](event)
        if result.outcome == DispatchOutcome.LOOKUP_MISS:
            logger.warning("No subscription found for %s event %s", event.kind.value, event.event_id)
        elif result.applied:
            logger.info("Applied %s event %s to team %s", event.kind.value, event.event_id, result.team_id)
        else:
            logger.info("Ignored %s event %s", event.kind.value, event.event_id)
        return result

    def _checkout_completed(self, event: CheckoutCompleted) -> DispatchResult:
        session = event.session
        if session.mode != "subscription" or not session.subscription:
            return _result(event, DispatchOutcome.IGNORED)

        team_id = session.metadata.get("team_id")
        raw_tier = session.metadata.get("tier")
        if not team_id or not raw_tier:
            raise ValidationError(
                message="Checkout session is missing team_id or tier metadata.",
                detail={"event_id": event.event_id, "session_id": session.id},
            )
        tier = _paid_tier(raw_tier)
        if tier is None:
            raise ValidationError(
                message=f"Unsupported tier '{raw_tier}' in checkout metadata.",
                detail={"event_id": event.event_id, "session_id": session.id},
            )

        subscription = self._provider.retrieve_subscription(session.subscription)
        fields = self._subscription_fields(subscription)
        customer_id = session.customer or subscription.customer
        if customer_id:
            fields["external_customer_id"] = customer_id
        update = SubscriptionUpdate(status=subscription.status, tier=tier, **fields)
        self._repository.upsert(team_id, update)
        return _result(event, DispatchOutcome.APPLIED, team_id)

    def _subscription_updated(self, event: SubscriptionUpdated) -> DispatchResult:
        subscription = event.subscription
        record = self._repository.find_by_external_customer_id(subscription.customer) if subscription.customer else None
        if record is None:
            return _result(event, DispatchOutcome.LOOKUP_MISS)

        update = SubscriptionUpdate(
            status=subscription.status,
            tier=self._tier_for(subscription),
            **self._subscription_fields(subscription),
        )
        self._repository.upsert(record.team_id, update)
        return _result(event, DispatchOutcome.APPLIED, record.team_id)

    def _subscription_deleted(self, event: SubscriptionDeleted) -> DispatchResult:
        subscription = event.subscription
        record = self._repository.find_by_external_subscription_id(subscription.id)
        if record is None and subscription.customer:
            record = self._repository.find_by_external_customer_id(subscription.customer)
        if record is None:
            return _result(event, DispatchOutcome.LOOKUP_MISS)

        # Back to the trial tier; the canceled status alone resolves to expired.
        update = SubscriptionUpdate(
            status=SubscriptionStatus.CANCELED,
            tier=Tier.TRIAL,
            cancel_at_period_end=False,
        )
        self._repository.upsert(record.team_id, update)
        return _result(event, DispatchOutcome.APPLIED, record.team_id)

    def _invoice_payment_succeeded(self, event: InvoicePaymentSucceeded) -> DispatchResult:
        return self._set_invoice_status(event, SubscriptionStatus.ACTIVE)

    def _invoice_payment_failed(self, event: InvoicePaymentFailed) -> DispatchResult:
        return self._set_invoice_status(event, SubscriptionStatus.PAST_DUE)

    def _set_invoice_status(self, event, status: SubscriptionStatus) -> DispatchResult:
        subscription_id = event.invoice.subscription_id
        if not subscription_id:
            return _result(event, DispatchOutcome.IGNORED)

        record: Optional[SubscriptionRecord] = self._repository.find_by_external_subscription_id(subscription_id)
        if record is None:
            return _result(event, DispatchOutcome.LOOKUP_MISS)

        self._repository.upsert(record.team_id, SubscriptionUpdate(status=status))
        return _result(event, DispatchOutcome.APPLIED, record.team_id)

    def _tier_for(self, subscription: SubscriptionObject) -> Tier:
        tier = self._prices.tier_for(subscription.price_id) or _paid_tier(subscription.metadata.get("tier"))
        if tier is None:
            logger.warning(
                "Price %s on subscription %s maps to no tier; falling back to starter",
                subscription.price_id,
                subscription.id,
            )
            return Tier.STARTER
        return tier

    @staticmethod
    def _subscription_fields(subscription: SubscriptionObject) -> Dict[str, object]:
        return {
            "external_subscription_id": subscription.id,
            "external_price_id": subscription.price_id,
            "current_period_start": subscription.period_start,
            "current_period_end": subscription.period_end,
            "cancel_at_period_end": subscription.cancel_at_period_end,
        }


__all__ = ["EventHandler", "WebhookDispatcher"]
