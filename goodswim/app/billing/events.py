"""Typed billing webhook events.

Only the event kinds in :class:`BillingEventKind` are modelled. Anything else
the processor sends parses to ``None`` and is acknowledged without effect.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..entitlements.models import SubscriptionStatus
from .errors import ValidationError

logger = logging.getLogger("billing")


class BillingEventKind(str, Enum):
    """Processor event types the dispatcher reacts to."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


# Processor statuses outside the stored set, mapped to the closest revoking status.
_STATUS_ALIASES = {
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.UNPAID,
}


def normalize_status(raw: Optional[str]) -> SubscriptionStatus:
    """Map a processor status onto :class:`SubscriptionStatus`.

    Unknown values become ``unpaid`` so they can never grant access.
    """

    if raw in _STATUS_ALIASES:
        return _STATUS_ALIASES[raw]
    try:
        return SubscriptionStatus(str(raw))
    except ValueError:
        logger.warning("Unknown subscription status %r treated as unpaid", raw)
        return SubscriptionStatus.UNPAID


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _object_id(value: Any) -> Optional[str]:
    """Processor references arrive either as ids or as expanded objects."""

    if value is None:
        return None
    if isinstance(value, dict):
        identifier = value.get("id")
        return str(identifier) if identifier else None
    return str(value) or None


def _stringify_metadata(value: Any) -> Dict[str, str]:
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items() if v is not None}
    return {}


ProcessorRef = Annotated[Optional[str], BeforeValidator(_object_id)]
Metadata = Annotated[Dict[str, str], BeforeValidator(_stringify_metadata)]
Status = Annotated[SubscriptionStatus, BeforeValidator(normalize_status)]


class _ProcessorObject(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class CheckoutSessionObject(_ProcessorObject):
    id: str
    mode: Optional[str] = None
    customer: ProcessorRef = None
    subscription: ProcessorRef = None
    metadata: Metadata = Field(default_factory=dict)


class SubscriptionObject(_ProcessorObject):
    id: str
    customer: ProcessorRef = None
    status: Status = SubscriptionStatus.INCOMPLETE
    cancel_at_period_end: bool = False
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    items: Dict[str, Any] = Field(default_factory=dict)
    metadata: Metadata = Field(default_factory=dict)

    @property
    def first_item(self) -> Dict[str, Any]:
        data: List[Any] = self.items.get("data") or []
        first = data[0] if data else {}
        return first if isinstance(first, dict) else {}

    @property
    def price_id(self) -> Optional[str]:
        return _object_id(self.first_item.get("price"))

    @property
    def period_start(self) -> Optional[datetime]:
        # Newer API versions only report billing periods on the items.
        return _from_timestamp(self.current_period_start or self.first_item.get("current_period_start"))

    @property
    def period_end(self) -> Optional[datetime]:
        return _from_timestamp(self.current_period_end or self.first_item.get("current_period_end"))


class InvoiceObject(_ProcessorObject):
    id: str
    customer: ProcessorRef = None
    subscription: ProcessorRef = None
    parent: Optional[Dict[str, Any]] = None

    @property
    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return _object_id(details.get("subscription"))


class _Envelope(BaseModel):
    id: str
    type: str
    created: Optional[int] = None
    data: Dict[str, Any]

    model_config = ConfigDict(extra="ignore")


class _Event(BaseModel):
    event_id: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class CheckoutCompleted(_Event):
    kind: Literal[BillingEventKind.CHECKOUT_COMPLETED] = BillingEventKind.CHECKOUT_COMPLETED
    session: CheckoutSessionObject


class SubscriptionUpdated(_Event):
    kind: Literal[BillingEventKind.SUBSCRIPTION_UPDATED] = BillingEventKind.SUBSCRIPTION_UPDATED
    subscription: SubscriptionObject


class SubscriptionDeleted(_Event):
    kind: Literal[BillingEventKind.SUBSCRIPTION_DELETED] = BillingEventKind.SUBSCRIPTION_DELETED
    subscription: SubscriptionObject


class InvoicePaymentSucceeded(_Event):
    kind: Literal[BillingEventKind.INVOICE_PAYMENT_SUCCEEDED] = BillingEventKind.INVOICE_PAYMENT_SUCCEEDED
    invoice: InvoiceObject


class InvoicePaymentFailed(_Event):
    kind: Literal[BillingEventKind.INVOICE_PAYMENT_FAILED] = BillingEventKind.INVOICE_PAYMENT_FAILED
    invoice: InvoiceObject


BillingEvent = Union[
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
]

_EVENT_MODELS = {
    BillingEventKind.CHECKOUT_COMPLETED: (CheckoutCompleted, "session", CheckoutSessionObject),
    BillingEventKind.SUBSCRIPTION_UPDATED: (SubscriptionUpdated, "subscription", SubscriptionObject),
    BillingEventKind.SUBSCRIPTION_DELETED: (SubscriptionDeleted, "subscription", SubscriptionObject),
    BillingEventKind.INVOICE_PAYMENT_SUCCEEDED: (InvoicePaymentSucceeded, "invoice", InvoiceObject),
    BillingEventKind.INVOICE_PAYMENT_FAILED: (InvoicePaymentFailed, "invoice", InvoiceObject),
}


def parse_event(payload: Union[bytes, str, Dict[str, Any]]) -> Optional[BillingEvent]:
    """Parse a verified webhook body into a typed event.

    Returns ``None`` for event types outside :class:`BillingEventKind`.
    """

    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise ValidationError(message="Webhook body is not valid JSON.") from exc

    try:
        envelope = _Envelope.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            message="Webhook body is missing required fields.",
            detail={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    try:
        kind = BillingEventKind(envelope.type)
    except ValueError:
        return None

    event_model, field_name, object_model = _EVENT_MODELS[kind]
    try:
        data_object = object_model.model_validate(envelope.data.get("object"))
    except PydanticValidationError as exc:
        raise ValidationError(
            message=f"Malformed '{envelope.type}' event object.",
            detail={"event_id": envelope.id, "errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    return event_model(
        event_id=envelope.id,
        created_at=_from_timestamp(envelope.created),
        **{field_name: data_object},
    )


__all__ = [
    "BillingEvent",
    "BillingEventKind",
    "CheckoutCompleted",
    "CheckoutSessionObject",
    "InvoiceObject",
    "InvoicePaymentFailed",
    "InvoicePaymentSucceeded",
    "SubscriptionDeleted",
    "SubscriptionObject",
    "SubscriptionUpdated",
    "normalize_status",
    "parse_event",
]
