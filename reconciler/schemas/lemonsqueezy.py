"""
Subscription Reconciler - Lemon Squeezy Webhook Schemas

Lemon Squeezy posts JSON:API documents: {meta: {...}, data: {id, type, attributes}}.
Custom data set at checkout comes back in meta.custom_data.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reconciler.models.enums import BillingProvider
from reconciler.schemas.events import NormalizedBillingEvent, classify_event


# JSON:API resource types
RESOURCE_SUBSCRIPTIONS = "subscriptions"
RESOURCE_SUBSCRIPTION_INVOICES = "subscription-invoices"
RESOURCE_ORDERS = "orders"


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LemonSqueezyMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_name: str
    custom_data: Dict[str, str] = Field(default_factory=dict)
    test_mode: bool = False

    @field_validator("custom_data", mode="before")
    @classmethod
    def coerce_custom_data(cls, v):
        if not v:
            return {}
        return {str(k): str(val) for k, val in v.items() if val is not None}


class LemonSqueezyData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v


class LemonSqueezyAttributes(BaseModel):
    """The attribute subset read from subscription, invoice and order resources."""
    model_config = ConfigDict(extra="ignore")

    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    cancelled: bool = False
    renews_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    first_order_item: Optional[Dict[str, Any]] = None

    @field_validator("customer_id", "subscription_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _as_str(v)


class LemonSqueezyWebhookPayload(BaseModel):
    """Top-level Lemon Squeezy webhook document."""
    model_config = ConfigDict(extra="ignore")

    meta: LemonSqueezyMeta
    data: LemonSqueezyData

    @property
    def event_name(self) -> str:
        return self.meta.event_name


def lemonsqueezy_event_id(payload: LemonSqueezyWebhookPayload, body: bytes) -> str:
    """
    Idempotency key for a Lemon Squeezy delivery.

    Lemon Squeezy does not send a per-event ID and a resource ID alone repeats
    across distinct events (every subscription_updated shares data.id), so the
    key combines the event name, the resource ID and a digest of the body.
    Retries resend the identical body and therefore collapse onto one key.
    """
    digest = hashlib.sha256(body).hexdigest()[:32]
    return f"{payload.meta.event_name}:{payload.data.id}:{digest}"


def normalize_lemonsqueezy_event(
    payload: LemonSqueezyWebhookPayload,
    event_id: str,
) -> NormalizedBillingEvent:
    """
    Translate a Lemon Squeezy document into a NormalizedBillingEvent.

    Raises:
        pydantic.ValidationError: if data.attributes has malformed values
    """
    kind = classify_event(BillingProvider.LEMONSQUEEZY, payload.meta.event_name)
    attributes = LemonSqueezyAttributes.model_validate(payload.data.attributes)
    custom_data = payload.meta.custom_data

    normalized = NormalizedBillingEvent(
        provider=BillingProvider.LEMONSQUEEZY,
        event_id=event_id,
        event_type=payload.meta.event_name,
        kind=kind,
        user_id=custom_data.get("user_id"),
        tier=custom_data.get("tier"),
        customer_id=attributes.customer_id,
        test_mode=payload.meta.test_mode,
        metadata=custom_data,
    )

    resource_type = payload.data.type
    if resource_type == RESOURCE_SUBSCRIPTIONS:
        normalized.subscription_id = payload.data.id
        normalized.raw_status = attributes.status
        normalized.cancel_at_period_end = attributes.cancelled
        # ends_at is set once a subscription is cancelled or expired
        normalized.period_end = _as_utc(attributes.ends_at or attributes.renews_at)
        if attributes.cancelled:
            normalized.cancelled_at = _as_utc(attributes.ends_at)
    elif resource_type == RESOURCE_SUBSCRIPTION_INVOICES:
        normalized.subscription_id = attributes.subscription_id
    elif resource_type == RESOURCE_ORDERS:
        first_item = attributes.first_order_item or {}
        normalized.subscription_id = _as_str(first_item.get("subscription_id"))

    return normalized
