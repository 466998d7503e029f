"""
Subscription Reconciler - Subscription View

Read model over BillingAccount used by account pages and access checks.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from reconciler.models.billing_account import BillingAccount
from reconciler.models.enums import BillingProvider, SubscriptionStatus, SubscriptionTier


@dataclass
class SubscriptionData:
    """Snapshot of a user's subscription."""
    tier: SubscriptionTier
    status: SubscriptionStatus
    provider: BillingProvider
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None

    @classmethod
    def from_account(cls, account: BillingAccount) -> "SubscriptionData":
        return cls(
            tier=account.tier,
            status=account.status,
            provider=account.provider,
            period_end=account.period_end,
            cancel_at_period_end=account.cancel_at_period_end,
            external_customer_id=account.external_customer_id,
            external_subscription_id=account.external_subscription_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "status": self.status.value,
            "provider": self.provider.value,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "cancel_at_period_end": self.cancel_at_period_end,
        }


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def has_active_subscription(data: SubscriptionData, now: Optional[datetime] = None) -> bool:
    """
    True while the user has paid access.

    A cancelled subscription keeps access until its period end.
    """
    if data.tier == SubscriptionTier.FREE:
        return False
    if data.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
        return True
    if data.status == SubscriptionStatus.CANCELLED and data.period_end is not None:
        now = now or datetime.now(timezone.utc)
        return _as_aware(data.period_end) > now
    return False


def can_cancel_subscription(data: SubscriptionData) -> bool:
    """A provider-billed subscription that is live and not already cancelled."""
    return (
        data.provider != BillingProvider.NONE
        and data.tier != SubscriptionTier.FREE
        and data.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
    )


def can_upgrade(data: SubscriptionData) -> bool:
    return data.tier != SubscriptionTier.ENTERPRISE
