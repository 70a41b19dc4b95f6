"""Billing webhooks, hosted sessions and subscription persistence."""

from .config import BillingConfig, load_billing_config
from .dispatcher import WebhookDispatcher
from .errors import (
    AuthenticationError,
    BillingError,
    ConfigurationError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from .events import BillingEvent, BillingEventKind, parse_event
from .models import CheckoutSession, DispatchOutcome, DispatchResult, PortalSession
from .notifications import SubscriptionChangeBus, SubscriptionChangeNotifier
from .prices import PriceCatalog
from .provider import PaymentProvider, StripePaymentProvider
from .repository import InMemorySubscriptionRepository, PostgresSubscriptionRepository, SubscriptionRepository
from .sessions import SessionInitiator
from .webhooks import StripeSignatureVerifier, WebhookIngest

__all__ = [
    "AuthenticationError",
    "BillingConfig",
    "BillingError",
    "BillingEvent",
    "BillingEventKind",
    "CheckoutSession",
    "ConfigurationError",
    "DispatchOutcome",
    "DispatchResult",
    "InMemorySubscriptionRepository",
    "PaymentProvider",
    "PersistenceError",
    "PortalSession",
    "PostgresSubscriptionRepository",
    "PriceCatalog",
    "SessionInitiator",
    "StripePaymentProvider",
    "StripeSignatureVerifier",
    "SubscriptionChangeBus",
    "SubscriptionChangeNotifier",
    "SubscriptionRepository",
    "UpstreamError",
    "ValidationError",
    "WebhookDispatcher",
    "WebhookIngest",
    "load_billing_config",
    "parse_event",
]
