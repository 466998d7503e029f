"""
Subscription Reconciler - Status Mapper

Pure translation of provider subscription statuses into SubscriptionStatus.
Unknown or missing values map to ACTIVE so an unfamiliar status never revokes access.
"""

import logging
from typing import Dict, Optional

from reconciler.models.enums import BillingProvider, SubscriptionStatus

logger = logging.getLogger(__name__)


STRIPE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    # Paused collection does not revoke access
    "paused": SubscriptionStatus.ACTIVE,
}

LEMONSQUEEZY_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "on_trial": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "paused": SubscriptionStatus.SUSPENDED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "cancelled": SubscriptionStatus.CANCELLED,
    "expired": SubscriptionStatus.CANCELLED,
}


def _lookup(table: Dict[str, SubscriptionStatus], provider: str, value: Optional[str]) -> SubscriptionStatus:
    if not value:
        return SubscriptionStatus.ACTIVE
    status = table.get(value.lower())
    if status is None:
        logger.warning(f"Unknown {provider} subscription status '{value}', treating as active")
        return SubscriptionStatus.ACTIVE
    return status


def map_stripe_status(value: Optional[str]) -> SubscriptionStatus:
    return _lookup(STRIPE_STATUS_MAP, "Stripe", value)


def map_lemonsqueezy_status(value: Optional[str]) -> SubscriptionStatus:
    return _lookup(LEMONSQUEEZY_STATUS_MAP, "Lemon Squeezy", value)


def map_status(provider: BillingProvider, value: Optional[str]) -> SubscriptionStatus:
    """Map a provider status string for the given provider."""
    if provider == BillingProvider.STRIPE:
        return map_stripe_status(value)
    if provider == BillingProvider.LEMONSQUEEZY:
        return map_lemonsqueezy_status(value)
    return SubscriptionStatus.ACTIVE
