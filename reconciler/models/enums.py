"""
Subscription Reconciler - Billing Enums

Canonical vocabularies shared by the models, schemas and services.
Provider-specific status strings are translated into these by the status mapper.
"""

from enum import Enum


class SubscriptionTier(str, Enum):
    """Commercial tier of an account."""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """
    Canonical subscription status.

    Every provider status value maps to exactly one of these.
    """
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class BillingProvider(str, Enum):
    """Payment provider that is authoritative for an account."""
    NONE = "none"
    STRIPE = "stripe"
    LEMONSQUEEZY = "lemonsqueezy"


class ProcessingStatus(str, Enum):
    """Ledger state of a single webhook delivery."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
