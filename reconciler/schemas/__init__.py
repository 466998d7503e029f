"""
Subscription Reconciler - Schemas Package

Pydantic schemas for provider webhook payloads and the normalized event.
"""

from reconciler.schemas.events import (
    BillingEventKind,
    LemonSqueezyEventType,
    NormalizedBillingEvent,
    StripeEventType,
    classify_event,
)
from reconciler.schemas.lemonsqueezy import (
    LemonSqueezyWebhookPayload,
    lemonsqueezy_event_id,
    normalize_lemonsqueezy_event,
)
from reconciler.schemas.stripe import StripeEvent, normalize_stripe_event
from reconciler.schemas.parsing import parse_webhook_body
