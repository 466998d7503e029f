"""
Subscription Reconciler - Stripe Webhook Schemas

Pydantic models for the parts of Stripe event payloads this service reads,
plus the translation into NormalizedBillingEvent.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reconciler.models.enums import BillingProvider
from reconciler.schemas.events import BillingEventKind, NormalizedBillingEvent, classify_event


# Keys Stripe objects carry in metadata, set by the checkout flow
METADATA_USER_ID = "userId"
METADATA_TIER = "tier"


def _expandable_id(value: Any) -> Any:
    """Stripe fields may be an ID string or an expanded object with an id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _from_unix(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


# =============================================================================
# OBJECT SCHEMAS
# =============================================================================

class StripeObject(BaseModel):
    """Fields shared by every Stripe object we read."""
    model_config = ConfigDict(extra="ignore")

    id: str
    customer: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def coerce_customer(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, v):
        if not v:
            return {}
        return {str(k): str(val) for k, val in v.items() if val is not None}


class StripeCheckoutSession(StripeObject):
    subscription: Optional[str] = None
    client_reference_id: Optional[str] = None

    @field_validator("subscription", mode="before")
    @classmethod
    def coerce_subscription(cls, v):
        return _expandable_id(v)


class StripeSubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    current_period_end: Optional[int] = None


class StripeSubscriptionItems(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: List[StripeSubscriptionItem] = Field(default_factory=list)


class StripeSubscription(StripeObject):
    status: Optional[str] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    items: Optional[StripeSubscriptionItems] = None

    @property
    def period_end(self) -> Optional[datetime]:
        """Newer API versions moved current_period_end onto the subscription items."""
        if self.current_period_end is not None:
            return _from_unix(self.current_period_end)
        if self.items and self.items.data:
            return _from_unix(self.items.data[0].current_period_end)
        return None


class StripeInvoice(StripeObject):
    subscription: Optional[str] = None
    parent: Optional[Dict[str, Any]] = None
    subscription_details: Optional[Dict[str, Any]] = None
    lines: Optional[Dict[str, Any]] = None

    @field_validator("subscription", mode="before")
    @classmethod
    def coerce_subscription(cls, v):
        return _expandable_id(v)

    @property
    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return _expandable_id(details.get("subscription"))

    @property
    def subscription_metadata(self) -> Dict[str, str]:
        details = self.subscription_details or (self.parent or {}).get("subscription_details") or {}
        return {str(k): str(v) for k, v in (details.get("metadata") or {}).items() if v is not None}

    @property
    def period_end(self) -> Optional[datetime]:
        lines = (self.lines or {}).get("data") or []
        if lines:
            return _from_unix((lines[0].get("period") or {}).get("end"))
        return None


# =============================================================================
# EVENT ENVELOPE
# =============================================================================

class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: Dict[str, Any]


class StripeEvent(BaseModel):
    """Top-level Stripe event envelope."""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    livemode: bool = False
    data: StripeEventData


def normalize_stripe_event(event: StripeEvent) -> NormalizedBillingEvent:
    """
    Translate a Stripe event into a NormalizedBillingEvent.

    Raises:
        pydantic.ValidationError: if data.object does not match the shape
            expected for the event's kind
    """
    kind = classify_event(BillingProvider.STRIPE, event.type)
    obj = event.data.object
    normalized = NormalizedBillingEvent(
        provider=BillingProvider.STRIPE,
        event_id=event.id,
        event_type=event.type,
        kind=kind,
        test_mode=not event.livemode,
    )

    if kind in (BillingEventKind.CHECKOUT_COMPLETED, BillingEventKind.CHECKOUT_EXPIRED):
        session = StripeCheckoutSession.model_validate(obj)
        normalized.user_id = session.metadata.get(METADATA_USER_ID) or session.client_reference_id
        normalized.tier = session.metadata.get(METADATA_TIER)
        normalized.customer_id = session.customer
        normalized.subscription_id = session.subscription
        normalized.metadata = session.metadata

    elif kind in (
        BillingEventKind.SUBSCRIPTION_CREATED,
        BillingEventKind.SUBSCRIPTION_UPDATED,
        BillingEventKind.SUBSCRIPTION_EXPIRED,
        BillingEventKind.TRIAL_WILL_END,
    ):
        subscription = StripeSubscription.model_validate(obj)
        normalized.user_id = subscription.metadata.get(METADATA_USER_ID)
        normalized.tier = subscription.metadata.get(METADATA_TIER)
        normalized.customer_id = subscription.customer
        normalized.subscription_id = subscription.id
        normalized.raw_status = subscription.status
        normalized.period_end = subscription.period_end
        normalized.cancelled_at = _from_unix(subscription.canceled_at)
        normalized.cancel_at_period_end = subscription.cancel_at_period_end
        normalized.metadata = subscription.metadata

    elif kind in (BillingEventKind.PAYMENT_SUCCEEDED, BillingEventKind.PAYMENT_FAILED):
        invoice = StripeInvoice.model_validate(obj)
        metadata = {**invoice.subscription_metadata, **invoice.metadata}
        normalized.user_id = metadata.get(METADATA_USER_ID)
        normalized.customer_id = invoice.customer
        normalized.subscription_id = invoice.subscription_id
        normalized.period_end = invoice.period_end
        normalized.metadata = metadata

    elif kind == BillingEventKind.INFORMATIONAL:
        customer = obj.get("customer") if event.type != "customer.updated" else obj.get("id")
        normalized.customer_id = _expandable_id(customer)

    return normalized
