"""Application wiring for billing and entitlements."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from ..billing import (
    BillingConfig,
    PaymentProvider,
    PostgresSubscriptionRepository,
    PriceCatalog,
    SessionInitiator,
    StripePaymentProvider,
    StripeSignatureVerifier,
    SubscriptionChangeBus,
    SubscriptionRepository,
    WebhookDispatcher,
    WebhookIngest,
    load_billing_config,
)
from ..billing.events import SubscriptionObject
from ..entitlements import EntitlementClient, InMemoryEntitlementCache
from ..entitlements.repository import PostgresTeamDirectory

logger = logging.getLogger("billing")


class LocalSandboxPaymentProvider(PaymentProvider):
    """Provider used when no Stripe key is configured (local development)."""

    def create_customer(self, *, team_id: str, user_id: str, email: Optional[str]) -> str:
        customer_id = f"cus_local_{uuid4().hex[:14]}"
        logger.info("Sandbox customer %s created for team %s", customer_id, team_id)
        return customer_id

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
        session_id = f"cs_local_{uuid4().hex}"
        return {
            "id": session_id,
            "url": f"https://billing.local/checkout/{session_id}",
            "success_url": success_url,
            "cancel_url": cancel_url,
        }

    def create_portal_session(self, *, customer_id: str, return_url: str) -> Dict[str, Any]:
        session_id = f"bps_local_{uuid4().hex}"
        return {"id": session_id, "url": f"https://billing.local/portal/{customer_id}", "return_url": return_url}

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObject:
        now = datetime.now(timezone.utc)
        return SubscriptionObject(
            id=subscription_id,
            status="active",
            current_period_start=int(now.timestamp()),
            current_period_end=int((now + timedelta(days=30)).timestamp()),
        )


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_price_catalog() -> PriceCatalog:
    return PriceCatalog.from_config(get_billing_config())


@lru_cache(maxsize=1)
def get_subscription_repository() -> SubscriptionRepository:
    return PostgresSubscriptionRepository()


@lru_cache(maxsize=1)
def get_team_directory() -> PostgresTeamDirectory:
    return PostgresTeamDirectory()


@lru_cache(maxsize=1)
def get_payment_provider() -> PaymentProvider:
    config = get_billing_config()
    if config.uses_stripe:
        return StripePaymentProvider(config.stripe_secret_key)
    logger.warning("STRIPE_SECRET_KEY is not set; using the local sandbox payment provider")
    return LocalSandboxPaymentProvider()


@lru_cache(maxsize=1)
def get_change_bus() -> SubscriptionChangeBus:
    return SubscriptionChangeBus()


@lru_cache(maxsize=1)
def get_entitlement_client() -> EntitlementClient:
    config = get_billing_config()
    client = EntitlementClient(
        repository=get_subscription_repository(),
        team_directory=get_team_directory(),
        cache=InMemoryEntitlementCache(),
        trial_length=timedelta(days=config.trial_length_days),
        ttl_seconds=config.entitlement_cache_ttl_seconds,
    )
    get_change_bus().subscribe(client.handle_subscription_change)
    return client


@lru_cache(maxsize=1)
def get_webhook_ingest() -> WebhookIngest:
    config = get_billing_config()
    dispatcher = WebhookDispatcher(
        repository=get_subscription_repository(),
        provider=get_payment_provider(),
        prices=get_price_catalog(),
    )
    verifier = StripeSignatureVerifier(
        config.stripe_webhook_secret,
        tolerance_seconds=config.webhook_tolerance_seconds,
    )
    return WebhookIngest(verifier, dispatcher)


@lru_cache(maxsize=1)
def get_session_initiator() -> SessionInitiator:
    config = get_billing_config()
    return SessionInitiator(
        repository=get_subscription_repository(),
        provider=get_payment_provider(),
        prices=get_price_catalog(),
        team_directory=get_team_directory(),
        app_url=config.app_url,
        trial_length=timedelta(days=config.trial_length_days),
    )


__all__ = [
    "LocalSandboxPaymentProvider",
    "get_billing_config",
    "get_change_bus",
    "get_entitlement_client",
    "get_payment_provider",
    "get_price_catalog",
    "get_session_initiator",
    "get_subscription_repository",
    "get_team_directory",
    "get_webhook_ingest",
]
