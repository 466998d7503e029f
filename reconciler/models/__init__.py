"""
Subscription Reconciler - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from reconciler.models.base import BaseModel, TimestampMixin
from reconciler.models.enums import (
    BillingProvider,
    ProcessingStatus,
    SubscriptionStatus,
    SubscriptionTier,
)
from reconciler.models.billing_account import BillingAccount
from reconciler.models.webhook_event import WebhookEventRecord

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "BillingProvider",
    "ProcessingStatus",
    "SubscriptionStatus",
    "SubscriptionTier",
    "BillingAccount",
    "WebhookEventRecord",
]
