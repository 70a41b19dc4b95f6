from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from goodswim.app.billing import (
    AuthenticationError,
    BillingEventKind,
    ConfigurationError,
    DispatchOutcome,
    InMemorySubscriptionRepository,
    PriceCatalog,
    StripeSignatureVerifier,
    UpstreamError,
    ValidationError,
    WebhookDispatcher,
    WebhookIngest,
    parse_event,
)
from goodswim.app.billing.events import SubscriptionObject
from goodswim.app.entitlements import (
    EffectiveTier,
    EntitlementClient,
    InMemoryEntitlementCache,
    SubscriptionStatus,
    SubscriptionUpdate,
    Tier,
)

SECRET = "whsec_test_secret"
T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)
PRICES = PriceCatalog({Tier.STARTER: "price_starter_m", Tier.PRO: "price_pro_m", Tier.CLUB: "price_club_m"})


class FakePaymentProvider:
    def __init__(self) -> None:
        self.subscriptions: Dict[str, SubscriptionObject] = {}
        self.retrieved: List[str] = []
        self.fail_with: Optional[Exception] = None

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObject:
        self.retrieved.append(subscription_id)
        if self.fail_with is not None:
            raise self.fail_with
        return self.subscriptions[subscription_id]


class FakeTeamDirectory:
    def team_created_at(self, team_id: str) -> Optional[datetime]:
        return T0

    def count_swimmers(self, team_id: str) -> int:
        return 10


def _sign(payload: str, secret: str = SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1") -> Dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(T0.timestamp()),
        "data": {"object": obj},
    }


def _subscription(sub_id: str = "sub_1", *, customer: str = "cus_1", price: str = "price_pro_m", **extra) -> Dict[str, Any]:
    obj = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_start": int(T0.timestamp()),
        "current_period_end": int((T0 + timedelta(days=30)).timestamp()),
        "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price}}]},
        "metadata": {},
    }
    obj.update(extra)
    return obj


def _checkout(metadata: Optional[Dict[str, str]] = None, **extra) -> Dict[str, Any]:
    obj = {
        "id": "cs_1",
        "object": "checkout.session",
        "mode": "subscription",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"team_id": "team-1", "user_id": "user-1", "tier": "pro"} if metadata is None else metadata,
    }
    obj.update(extra)
    return obj


def _invoice(subscription: Optional[str] = "sub_1", **extra) -> Dict[str, Any]:
    obj = {"id": "in_1", "object": "invoice", "customer": "cus_1", "subscription": subscription}
    obj.update(extra)
    return obj


@pytest.fixture
def components():
    repository = InMemorySubscriptionRepository()
    provider = FakePaymentProvider()
    provider.subscriptions["sub_1"] = SubscriptionObject.model_validate(_subscription())
    dispatcher = WebhookDispatcher(repository=repository, provider=provider, prices=PRICES)
    ingest = WebhookIngest(StripeSignatureVerifier(SECRET), dispatcher)
    return ingest, dispatcher, repository, provider


def _dispatch(dispatcher: WebhookDispatcher, body: Dict[str, Any]):
    event = parse_event(body)
    assert event is not None
    return dispatcher.dispatch(event)


def test_missing_signature_is_rejected_before_any_write(components) -> None:
    ingest, _dispatcher, repository, _provider = components
    payload = json.dumps(_event("checkout.session.completed", _checkout()))

    with pytest.raises(AuthenticationError) as exc:
        ingest.handle(payload.encode(), None)

    assert exc.value.status_code == 400
    assert repository.get("team-1") is None


def test_tampered_body_is_rejected(components) -> None:
    ingest, _dispatcher, repository, provider = components
    payload = json.dumps(_event("checkout.session.completed", _checkout()))
    signature = _sign(payload)
    tampered = payload.replace('"pro"', '"club"')

    with pytest.raises(AuthenticationError):
        ingest.handle(tampered.encode(), signature)

    assert provider.retrieved == []
    assert repository.get("team-1") is None


def test_stale_signature_timestamp_is_rejected(components) -> None:
    ingest, _dispatcher, _repository, _provider = components
    payload = json.dumps(_event("invoice.payment_failed", _invoice()))

    with pytest.raises(AuthenticationError):
        ingest.handle(payload.encode(), _sign(payload, timestamp=int(time.time()) - 3600))


def test_missing_webhook_secret_fails_closed() -> None:
    dispatcher = WebhookDispatcher(InMemorySubscriptionRepository(), FakePaymentProvider(), PRICES)
    ingest = WebhookIngest(StripeSignatureVerifier(None), dispatcher)
    payload = json.dumps(_event("invoice.payment_failed", _invoice()))

    with pytest.raises(ConfigurationError):
        ingest.handle(payload.encode(), _sign(payload))


def test_signed_checkout_is_applied(components) -> None:
    ingest, _dispatcher, repository, provider = components
    payload = json.dumps(_event("checkout.session.completed", _checkout()))

    result = ingest.handle(payload.encode(), _sign(payload))

    record = repository.get("team-1")
    assert result.outcome == DispatchOutcome.APPLIED
    assert result.kind == BillingEventKind.CHECKOUT_COMPLETED
    assert result.team_id == "team-1"
    assert provider.retrieved == ["sub_1"]
    assert record.status == SubscriptionStatus.ACTIVE
    assert record.tier == Tier.PRO
    assert record.external_customer_id == "cus_1"
    assert record.external_subscription_id == "sub_1"
    assert record.external_price_id == "price_pro_m"
    assert record.current_period_end == T0 + timedelta(days=30)


def test_unknown_event_type_is_acknowledged_without_effect(components) -> None:
    ingest, _dispatcher, repository, _provider = components
    payload = json.dumps(_event("customer.created", {"id": "cus_9", "object": "customer"}, event_id="evt_9"))

    result = ingest.handle(payload.encode(), _sign(payload))

    assert result.outcome == DispatchOutcome.IGNORED
    assert result.kind is None
    assert result.event_id == "evt_9"
    assert result.event_type == "customer.created"
    assert repository.get("team-1") is None


def test_checkout_then_delete_resolves_to_pro_then_expired(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    client = EntitlementClient(repository, FakeTeamDirectory(), InMemoryEntitlementCache(), clock=lambda: T0)

    _dispatch(dispatcher, _event("checkout.session.completed", _checkout()))
    assert client.refresh("team-1").effective_tier(T0) == EffectiveTier.PRO

    _dispatch(dispatcher, _event("customer.subscription.deleted", _subscription(status="canceled"), event_id="evt_2"))
    record = repository.get("team-1")
    state = client.refresh("team-1")

    assert record.status == SubscriptionStatus.CANCELED
    assert record.tier == Tier.TRIAL
    assert record.trial_end is None
    assert state.effective_tier(T0) == EffectiveTier.EXPIRED


def test_deleted_subscription_is_expired_even_with_future_trial_end(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert(
        "team-1",
        SubscriptionUpdate(
            status=SubscriptionStatus.ACTIVE,
            tier=Tier.PRO,
            external_subscription_id="sub_1",
            trial_end=T0 + timedelta(days=10),
        ),
    )
    client = EntitlementClient(repository, FakeTeamDirectory(), InMemoryEntitlementCache(), clock=lambda: T0)

    _dispatch(dispatcher, _event("customer.subscription.deleted", _subscription(status="canceled")))
    state = client.refresh("team-1")

    assert state.subscription.trial_end == T0 + timedelta(days=10)
    assert state.effective_tier(T0) == EffectiveTier.EXPIRED


def test_checkout_missing_team_metadata_is_a_validation_error(components) -> None:
    _ingest, dispatcher, repository, provider = components

    with pytest.raises(ValidationError) as exc:
        _dispatch(dispatcher, _event("checkout.session.completed", _checkout(metadata={"tier": "pro"})))

    assert exc.value.status_code == 400
    assert provider.retrieved == []
    assert repository.get("team-1") is None


def test_checkout_with_unsupported_tier_is_rejected(components) -> None:
    _ingest, dispatcher, _repository, _provider = components

    with pytest.raises(ValidationError):
        _dispatch(
            dispatcher,
            _event("checkout.session.completed", _checkout(metadata={"team_id": "team-1", "tier": "trial"})),
        )


def test_one_time_checkout_is_ignored(components) -> None:
    _ingest, dispatcher, repository, _provider = components

    result = _dispatch(dispatcher, _event("checkout.session.completed", _checkout(mode="payment", subscription=None)))

    assert result.outcome == DispatchOutcome.IGNORED
    assert repository.get("team-1") is None


def test_checkout_processor_failure_propagates_for_retry(components) -> None:
    _ingest, dispatcher, repository, provider = components
    provider.fail_with = UpstreamError(message="Payment processor failed to retrieve subscription.")

    with pytest.raises(UpstreamError) as exc:
        _dispatch(dispatcher, _event("checkout.session.completed", _checkout()))

    assert exc.value.status_code == 502
    assert repository.get("team-1") is None


def test_subscription_updated_maps_price_to_tier(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_customer_id="cus_1"))

    result = _dispatch(
        dispatcher,
        _event("customer.subscription.updated", _subscription(price="price_club_m", cancel_at_period_end=True)),
    )

    record = repository.get("team-1")
    assert result.outcome == DispatchOutcome.APPLIED
    assert record.tier == Tier.CLUB
    assert record.external_price_id == "price_club_m"
    assert record.cancel_at_period_end is True


def test_subscription_updated_falls_back_to_metadata_tier(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_customer_id="cus_1"))

    _dispatch(
        dispatcher,
        _event("customer.subscription.updated", _subscription(price="price_legacy", metadata={"tier": "club"})),
    )

    assert repository.get("team-1").tier == Tier.CLUB


def test_subscription_updated_with_unmapped_price_defaults_to_starter(components, caplog) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_customer_id="cus_1"))

    with caplog.at_level("WARNING", logger="billing"):
        _dispatch(dispatcher, _event("customer.subscription.updated", _subscription(price="price_legacy")))

    assert repository.get("team-1").tier == Tier.STARTER
    assert "falling back to starter" in caplog.text


def test_subscription_updated_normalizes_unknown_status(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_customer_id="cus_1"))

    _dispatch(dispatcher, _event("customer.subscription.updated", _subscription(status="paused")))

    assert repository.get("team-1").status == SubscriptionStatus.UNPAID


def test_subscription_updated_for_unknown_customer_is_a_lookup_miss(components) -> None:
    _ingest, dispatcher, repository, _provider = components

    result = _dispatch(dispatcher, _event("customer.subscription.updated", _subscription(customer="cus_404")))

    assert result.outcome == DispatchOutcome.LOOKUP_MISS
    assert result.applied is False
    assert repository.find_by_external_customer_id("cus_404") is None


def test_subscription_deleted_falls_back_to_customer_lookup(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_customer_id="cus_1", status=SubscriptionStatus.ACTIVE))

    result = _dispatch(dispatcher, _event("customer.subscription.deleted", _subscription("sub_unknown")))

    assert result.team_id == "team-1"
    assert repository.get("team-1").status == SubscriptionStatus.CANCELED


@pytest.mark.parametrize(
    ("event_type", "expected"),
    [
        ("invoice.payment_failed", SubscriptionStatus.PAST_DUE),
        ("invoice.payment_succeeded", SubscriptionStatus.ACTIVE),
    ],
)
def test_invoice_events_set_status(components, event_type: str, expected: SubscriptionStatus) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert(
        "team-1",
        SubscriptionUpdate(external_subscription_id="sub_1", status=SubscriptionStatus.INCOMPLETE, tier=Tier.PRO),
    )

    result = _dispatch(dispatcher, _event(event_type, _invoice()))

    record = repository.get("team-1")
    assert result.outcome == DispatchOutcome.APPLIED
    assert record.status == expected
    assert record.tier == Tier.PRO


def test_invoice_subscription_from_parent_details(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    repository.upsert("team-1", SubscriptionUpdate(external_subscription_id="sub_1", status=SubscriptionStatus.ACTIVE))
    invoice = _invoice(subscription=None, parent={"subscription_details": {"subscription": "sub_1"}})

    _dispatch(dispatcher, _event("invoice.payment_failed", invoice))

    assert repository.get("team-1").status == SubscriptionStatus.PAST_DUE


def test_invoice_without_subscription_is_ignored(components) -> None:
    _ingest, dispatcher, _repository, _provider = components

    result = _dispatch(dispatcher, _event("invoice.payment_succeeded", _invoice(subscription=None)))

    assert result.outcome == DispatchOutcome.IGNORED


def test_invoice_for_unknown_subscription_is_a_lookup_miss(components, caplog) -> None:
    _ingest, dispatcher, _repository, _provider = components

    with caplog.at_level("WARNING", logger="billing"):
        result = _dispatch(dispatcher, _event("invoice.payment_failed", _invoice(subscription="sub_404")))

    assert result.outcome == DispatchOutcome.LOOKUP_MISS
    assert "No subscription found" in caplog.text


def test_replaying_an_event_converges_to_same_state(components) -> None:
    _ingest, dispatcher, repository, _provider = components
    body = _event("checkout.session.completed", _checkout())

    _dispatch(dispatcher, body)
    first = repository.get("team-1")
    _dispatch(dispatcher, body)

    assert repository.get("team-1") == first


def test_every_event_kind_has_a_handler() -> None:
    class IncompleteDispatcher(WebhookDispatcher):
        def _handler_table(self):
            table = dict(super()._handler_table())
            table.pop(BillingEventKind.INVOICE_PAYMENT_FAILED)
            return table

    with pytest.raises(RuntimeError, match="invoice.payment_failed"):
        IncompleteDispatcher(InMemorySubscriptionRepository(), FakePaymentProvider(), PRICES)


def test_malformed_body_is_a_validation_error() -> None:
    with pytest.raises(ValidationError):
        parse_event(b"{not json")

    with pytest.raises(ValidationError):
        parse_event({"type": "invoice.payment_failed"})
