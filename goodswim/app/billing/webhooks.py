"""Authenticated entry point for payment processor webhooks."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import stripe

from .dispatcher import WebhookDispatcher
from .errors import AuthenticationError, ConfigurationError, ValidationError
from .events import parse_event
from .models import DispatchOutcome, DispatchResult

logger = logging.getLogger("billing")

DEFAULT_TOLERANCE_SECONDS = 300


class WebhookVerifier(Protocol):
    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Authenticate ``payload`` and return the decoded event body."""


class StripeSignatureVerifier:
    """Checks the ``Stripe-Signature`` header against the shared secret.

    The header carries a timestamp and one or more HMAC-SHA256 signatures of
    ``"{timestamp}.{raw body}"``; timestamps older than ``tolerance_seconds``
    are rejected to limit replay.
    """

    def __init__(self, secret: Optional[str], *, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._secret = secret
        self._tolerance = tolerance_seconds

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self._secret:
            logger.error("Rejecting webhook: STRIPE_WEBHOOK_SECRET is not configured")
            raise ConfigurationError(
                message="Webhook secret is not configured.",
                detail={"setting": "STRIPE_WEBHOOK_SECRET"},
            )
        if not signature:
            raise AuthenticationError(message="No signature provided.")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._secret, tolerance=self._tolerance)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise AuthenticationError(message="Invalid signature.") from exc
        except ValueError as exc:
            raise ValidationError(message="Webhook body is not valid JSON.") from exc
        return event.to_dict()


class WebhookIngest:
    """Verify, parse and dispatch one webhook delivery.

    Nothing is read or written before the signature checks out.
    """

    def __init__(self, verifier: WebhookVerifier, dispatcher: WebhookDispatcher) -> None:
        self._verifier = verifier
        self._dispatcher = dispatcher

    def handle(self, payload: bytes, signature: Optional[str]) -> DispatchResult:
        body = self._verifier.verify(payload, signature)
        event = parse_event(body)
        if event is None:
            logger.info("Unhandled webhook event type=%s id=%s", body.get("type"), body.get("id"))
            return DispatchResult(
                event_id=body.get("id"),
                event_type=body.get("type"),
                outcome=DispatchOutcome.IGNORED,
            )
        return self._dispatcher.dispatch(event)


__all__ = ["DEFAULT_TOLERANCE_SECONDS", "StripeSignatureVerifier", "WebhookIngest", "WebhookVerifier"]
