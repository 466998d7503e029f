"""
Subscription Reconciler - Webhook Body Parsing

Validates a raw webhook body against the provider's schema and normalizes it.
"""

import logging

from pydantic import ValidationError

from reconciler.models.enums import BillingProvider
from reconciler.schemas.events import NormalizedBillingEvent
from reconciler.schemas.lemonsqueezy import (
    LemonSqueezyWebhookPayload,
    lemonsqueezy_event_id,
    normalize_lemonsqueezy_event,
)
from reconciler.schemas.stripe import StripeEvent, normalize_stripe_event
from reconciler.utils.error_handling import WebhookPayloadException

logger = logging.getLogger(__name__)


def parse_webhook_body(provider: BillingProvider, body: bytes) -> NormalizedBillingEvent:
    """
    Parse and normalize a webhook body.

    Raises:
        WebhookPayloadException: body is not JSON or not a valid event for the provider
    """
    try:
        if provider == BillingProvider.STRIPE:
            return normalize_stripe_event(StripeEvent.model_validate_json(body))
        if provider == BillingProvider.LEMONSQUEEZY:
            payload = LemonSqueezyWebhookPayload.model_validate_json(body)
            return normalize_lemonsqueezy_event(payload, lemonsqueezy_event_id(payload, body))
    except ValidationError as e:
        logger.warning(f"Invalid {provider.value} webhook payload: {e.error_count()} validation errors")
        raise WebhookPayloadException(provider.value, str(e), original_error=e)

    raise WebhookPayloadException(provider.value, "Unsupported provider")
