"""
Subscription Reconciler - Billing Account Model

One row per user holding the canonical subscription state. Rows are created by
the checkout flow; webhooks only ever update them.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from reconciler.models.base import BaseModel
from reconciler.models.enums import BillingProvider, SubscriptionStatus, SubscriptionTier


class BillingAccount(BaseModel):
    """
    Canonical subscription state of a user.

    An account with provider NONE is on the free tier and carries no external IDs.
    """
    __tablename__ = "billing_accounts"

    # Identity is owned by the auth system; this is a plain reference
    user_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
    )

    tier: Mapped[SubscriptionTier] = mapped_column(
        SQLEnum(SubscriptionTier, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionTier.FREE,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    provider: Mapped[BillingProvider] = mapped_column(
        SQLEnum(BillingProvider, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=BillingProvider.NONE,
    )

    external_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Stripe customer ID or Lemon Squeezy customer ID"
    )
    external_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Stripe subscription ID or Lemon Squeezy subscription ID"
    )

    period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def cancel_at_period_end(self) -> bool:
        """A cancelled subscription keeps access until period_end."""
        return self.status == SubscriptionStatus.CANCELLED

    def __repr__(self) -> str:
        return (
            f"<BillingAccount(user_id={self.user_id}, tier={self.tier}, "
            f"status={self.status}, provider={self.provider})>"
        )
