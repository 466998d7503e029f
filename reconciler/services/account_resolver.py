"""
Subscription Reconciler - Account Resolver

Finds the BillingAccount an event refers to. Sources are tried in priority order
and the first match wins:

1. internal user ID carried in event metadata / custom data
2. external subscription ID on an account billed by the same provider
3. external customer ID on an account billed by the same provider

Resolution never creates an account.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.models.billing_account import BillingAccount
from reconciler.models.enums import BillingProvider

logger = logging.getLogger(__name__)


class ResolutionSource(str, Enum):
    """Which identifier matched the account."""
    METADATA_USER_ID = "metadata_user_id"
    SUBSCRIPTION_ID = "subscription_id"
    CUSTOMER_ID = "customer_id"


@dataclass
class Resolution:
    account: Optional[BillingAccount] = None
    source: Optional[ResolutionSource] = None

    @property
    def resolved(self) -> bool:
        return self.account is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.account.user_id if self.account else None


class AccountResolver:
    """Priority-ordered lookup of billing accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self,
        provider: BillingProvider,
        user_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Resolution:
        if user_id:
            account = await self._first(BillingAccount.user_id == user_id)
            if account:
                return Resolution(account, ResolutionSource.METADATA_USER_ID)
            logger.warning(f"Metadata user {user_id} has no billing account, trying external IDs")

        if subscription_id:
            account = await self._first(
                BillingAccount.provider == provider,
                BillingAccount.external_subscription_id == subscription_id,
            )
            if account:
                return Resolution(account, ResolutionSource.SUBSCRIPTION_ID)

        if customer_id:
            account = await self._first(
                BillingAccount.provider == provider,
                BillingAccount.external_customer_id == customer_id,
            )
            if account:
                return Resolution(account, ResolutionSource.CUSTOMER_ID)

        logger.warning(
            f"No billing account for {provider.value} event "
            f"(user={user_id}, subscription={subscription_id}, customer={customer_id})"
        )
        return Resolution()

    async def _first(self, *conditions) -> Optional[BillingAccount]:
        result = await self.db.execute(
            select(BillingAccount)
            .where(*conditions)
            .order_by(BillingAccount.updated_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
