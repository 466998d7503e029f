"""
Subscription Reconciler - Webhook Router

Inbound webhook endpoints. Both read the raw body (signatures are computed over
the exact bytes) and hand it to the ReconciliationEngine.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.database import get_db
from reconciler.models.enums import BillingProvider
from reconciler.services.reconciliation_service import ReconciliationEngine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Webhooks"])

STRIPE_SIGNATURE_HEADER = "Stripe-Signature"
LEMONSQUEEZY_SIGNATURE_HEADER = "X-Signature"


@router.post(
    "/stripe/webhook",
    summary="Stripe webhook handler",
    include_in_schema=False,
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Stripe webhook events.

    Security:
    - Verifies Stripe-Signature with the endpoint secret and timestamp tolerance
    - Returns 400 for missing or invalid signatures

    Responses:
    - 200 {received, eventType} when processed or already processed
    - 400 {error, code} for signature or payload problems
    - 409 {error, code} while another delivery of the event is in flight
    - 500 {error, code} when processing failed; Stripe retries
    """
    body = await request.body()
    signature = request.headers.get(STRIPE_SIGNATURE_HEADER)

    engine = ReconciliationEngine(db)
    outcome = await engine.process(BillingProvider.STRIPE, body, signature)
    return outcome.to_response()


@router.post(
    "/lemonsqueezy/webhook",
    summary="Lemon Squeezy webhook handler",
    include_in_schema=False,
)
async def lemonsqueezy_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Lemon Squeezy webhook events.

    Verifies X-Signature (HMAC-SHA256 of the body). Response contract matches
    the Stripe endpoint.
    """
    body = await request.body()
    signature = request.headers.get(LEMONSQUEEZY_SIGNATURE_HEADER)

    engine = ReconciliationEngine(db)
    outcome = await engine.process(BillingProvider.LEMONSQUEEZY, body, signature)
    return outcome.to_response()
