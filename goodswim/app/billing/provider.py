"""Payment processor integration."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import stripe

from .errors import UpstreamError
from .events import SubscriptionObject

logger = logging.getLogger("billing")


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def create_customer(self, *, team_id: str, user_id: str, email: Optional[str]) -> str:
        """Create a processor customer and return its id."""

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
        subscription_metadata: Mapping[str, str],
    ) -> Dict[str, Any]:
        """Create a hosted subscription checkout; returns at least ``id`` and ``url``."""

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, Any]:
        """Create a hosted billing portal session; returns at least ``url``."""

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObject:
        """Fetch the full subscription object."""


class StripePaymentProvider:
    """:class:`PaymentProvider` backed by the Stripe API.

    Each call is a single request bounded by the client's network timeout.
    Stripe failures surface as :class:`UpstreamError` so callers answer 502
    and the processor redelivers webhooks.
    """

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("Stripe API key is required")
        self._api_key = api_key

    def create_customer(self, *, team_id: str, user_id: str, email: Optional[str]) -> str:
        params: Dict[str, Any] = {"metadata": {"team_id": team_id, "user_id": user_id}}
        if email:
            params["email"] = email
        try:
            customer = stripe.Customer.create(api_key=self._api_key, **params)
        except stripe.StripeError as exc:
            raise self._upstream("create customer", exc) from exc
        return str(customer.id)

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str],
        subscription_metadata: Mapping[str, str],
    ) -> Dict[str, Any]:
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                subscription_data={"metadata": dict(subscription_metadata)},
                metadata=dict(metadata),
                allow_promotion_codes=True,
                billing_address_collection="auto",
            )
        except stripe.StripeError as exc:
            raise self._upstream("create checkout session", exc) from exc
        return {"id": session.id, "url": session.url}

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, Any]:
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            raise self._upstream("create portal session", exc) from exc
        return {"id": session.id, "url": session.url}

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObject:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            raise self._upstream("retrieve subscription", exc) from exc
        return SubscriptionObject.model_validate(subscription.to_dict())

    @staticmethod
    def _upstream(action: str, exc: stripe.StripeError) -> UpstreamError:
        logger.error("Stripe request failed action=%s error=%s", action, exc)
        return UpstreamError(
            message=f"Payment processor failed to {action}.",
            detail={"reason": exc.user_message or str(exc)},
        )


__all__ = ["PaymentProvider", "StripePaymentProvider"]
