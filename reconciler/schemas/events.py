"""
Subscription Reconciler - Event Vocabulary

Closed sets of provider event types, the provider-neutral event kinds they
map onto, and the normalized event handed to the dispatcher's handlers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from reconciler.models.enums import BillingProvider


# =============================================================================
# PROVIDER EVENT TYPES
# =============================================================================

class StripeEventType(str, Enum):
    """Stripe event types this service understands."""
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    SUBSCRIPTION_PAUSED = "customer.subscription.paused"
    SUBSCRIPTION_RESUMED = "customer.subscription.resumed"
    SUBSCRIPTION_TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    BILLING_PORTAL_SESSION_CREATED = "billing_portal.session.created"
    CUSTOMER_UPDATED = "customer.updated"


class LemonSqueezyEventType(str, Enum):
    """Lemon Squeezy event names this service understands."""
    ORDER_CREATED = "order_created"
    ORDER_REFUNDED = "order_refunded"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_UNPAUSED = "subscription_unpaused"
    SUBSCRIPTION_PAYMENT_SUCCESS = "subscription_payment_success"
    SUBSCRIPTION_PAYMENT_FAILED = "subscription_payment_failed"
    SUBSCRIPTION_PAYMENT_RECOVERED = "subscription_payment_recovered"
    LICENSE_KEY_CREATED = "license_key_created"
    LICENSE_KEY_UPDATED = "license_key_updated"


class BillingEventKind(str, Enum):
    """
    Provider-neutral meaning of an event.

    Handlers are keyed on these, not on provider event names.
    """
    CHECKOUT_COMPLETED = "checkout_completed"
    CHECKOUT_EXPIRED = "checkout_expired"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    TRIAL_WILL_END = "trial_will_end"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"
    ORDER_REFUNDED = "order_refunded"
    INFORMATIONAL = "informational"
    UNKNOWN = "unknown"


STRIPE_EVENT_KINDS: Dict[StripeEventType, BillingEventKind] = {
    StripeEventType.CHECKOUT_SESSION_COMPLETED: BillingEventKind.CHECKOUT_COMPLETED,
    StripeEventType.CHECKOUT_SESSION_EXPIRED: BillingEventKind.CHECKOUT_EXPIRED,
    StripeEventType.SUBSCRIPTION_CREATED: BillingEventKind.SUBSCRIPTION_CREATED,
    StripeEventType.SUBSCRIPTION_UPDATED: BillingEventKind.SUBSCRIPTION_UPDATED,
    # Stripe deletes a subscription when it actually ends
    StripeEventType.SUBSCRIPTION_DELETED: BillingEventKind.SUBSCRIPTION_EXPIRED,
    StripeEventType.SUBSCRIPTION_PAUSED: BillingEventKind.SUBSCRIPTION_UPDATED,
    StripeEventType.SUBSCRIPTION_RESUMED: BillingEventKind.SUBSCRIPTION_UPDATED,
    StripeEventType.SUBSCRIPTION_TRIAL_WILL_END: BillingEventKind.TRIAL_WILL_END,
    StripeEventType.INVOICE_PAID: BillingEventKind.PAYMENT_SUCCEEDED,
    StripeEventType.INVOICE_PAYMENT_SUCCEEDED: BillingEventKind.PAYMENT_SUCCEEDED,
    StripeEventType.INVOICE_PAYMENT_FAILED: BillingEventKind.PAYMENT_FAILED,
    StripeEventType.BILLING_PORTAL_SESSION_CREATED: BillingEventKind.INFORMATIONAL,
    StripeEventType.CUSTOMER_UPDATED: BillingEventKind.INFORMATIONAL,
}

LEMONSQUEEZY_EVENT_KINDS: Dict[LemonSqueezyEventType, BillingEventKind] = {
    LemonSqueezyEventType.ORDER_CREATED: BillingEventKind.CHECKOUT_COMPLETED,
    LemonSqueezyEventType.ORDER_REFUNDED: BillingEventKind.ORDER_REFUNDED,
    LemonSqueezyEventType.SUBSCRIPTION_CREATED: BillingEventKind.SUBSCRIPTION_CREATED,
    LemonSqueezyEventType.SUBSCRIPTION_UPDATED: BillingEventKind.SUBSCRIPTION_UPDATED,
    LemonSqueezyEventType.SUBSCRIPTION_CANCELLED: BillingEventKind.SUBSCRIPTION_CANCELLED,
    LemonSqueezyEventType.SUBSCRIPTION_RESUMED: BillingEventKind.SUBSCRIPTION_RESUMED,
    LemonSqueezyEventType.SUBSCRIPTION_EXPIRED: BillingEventKind.SUBSCRIPTION_EXPIRED,
    LemonSqueezyEventType.SUBSCRIPTION_PAUSED: BillingEventKind.SUBSCRIPTION_PAUSED,
    LemonSqueezyEventType.SUBSCRIPTION_UNPAUSED: BillingEventKind.SUBSCRIPTION_RESUMED,
    LemonSqueezyEventType.SUBSCRIPTION_PAYMENT_SUCCESS: BillingEventKind.PAYMENT_SUCCEEDED,
    LemonSqueezyEventType.SUBSCRIPTION_PAYMENT_FAILED: BillingEventKind.PAYMENT_FAILED,
    LemonSqueezyEventType.SUBSCRIPTION_PAYMENT_RECOVERED: BillingEventKind.PAYMENT_RECOVERED,
    LemonSqueezyEventType.LICENSE_KEY_CREATED: BillingEventKind.INFORMATIONAL,
    LemonSqueezyEventType.LICENSE_KEY_UPDATED: BillingEventKind.INFORMATIONAL,
}

# Kinds that never touch an account
NON_MUTATING_KINDS = frozenset({
    BillingEventKind.CHECKOUT_EXPIRED,
    BillingEventKind.TRIAL_WILL_END,
    BillingEventKind.INFORMATIONAL,
    BillingEventKind.UNKNOWN,
})


def classify_event(provider: BillingProvider, event_type: str) -> BillingEventKind:
    """Map a provider event type string to its kind. Unrecognized types are UNKNOWN."""
    try:
        if provider == BillingProvider.STRIPE:
            return STRIPE_EVENT_KINDS[StripeEventType(event_type)]
        if provider == BillingProvider.LEMONSQUEEZY:
            return LEMONSQUEEZY_EVENT_KINDS[LemonSqueezyEventType(event_type)]
    except ValueError:
        return BillingEventKind.UNKNOWN
    return BillingEventKind.UNKNOWN


# =============================================================================
# NORMALIZED EVENT
# =============================================================================

@dataclass
class NormalizedBillingEvent:
    """
    A provider event reduced to the fields reconciliation needs.

    Every ID is a string; timestamps are timezone-aware UTC.
    """
    provider: BillingProvider
    event_id: str
    event_type: str
    kind: BillingEventKind
    user_id: Optional[str] = None
    tier: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    raw_status: Optional[str] = None
    period_end: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    test_mode: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def is_mutating(self) -> bool:
        return self.kind not in NON_MUTATING_KINDS
