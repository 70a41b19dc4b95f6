"""API routes exposing billing functionality."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, Request
from fastapi.concurrency import run_in_threadpool

from ..schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    EntitlementSummary,
    PortalRequest,
    PortalResponse,
    WebhookAck,
)
from ..services.billing import (
    get_change_bus,
    get_entitlement_client,
    get_session_initiator,
    get_webhook_ingest,
)

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAck:
    # Signatures cover the exact bytes sent, so the body is read raw.
    payload = await request.body()
    result = await run_in_threadpool(get_webhook_ingest().handle, payload, stripe_signature)
    if result.applied and result.team_id:
        background_tasks.add_task(get_change_bus().publish, result.team_id)
    return WebhookAck(received=True)


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(payload: CheckoutRequest) -> CheckoutResponse:
    session = get_session_initiator().start_checkout(
        payload.team_id,
        payload.tier,
        payload.user_id,
        swimmer_count=payload.swimmer_count,
        email=payload.email,
    )
    return CheckoutResponse.from_session(session)


@router.post("/portal", response_model=PortalResponse)
def create_portal(payload: PortalRequest) -> PortalResponse:
    session = get_session_initiator().start_portal(payload.team_id, payload.user_id)
    return PortalResponse.from_session(session)


@router.get("/entitlements/{team_id}", response_model=EntitlementSummary)
def read_entitlements(team_id: str) -> EntitlementSummary:
    client = get_entitlement_client()
    state = client.load(team_id)
    return EntitlementSummary.from_state(state, client.now())
