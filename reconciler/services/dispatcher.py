"""
Subscription Reconciler - Event Dispatcher

Routes a normalized event to the handler for its kind. Each mutating handler
resolves the account, derives the new state from the event alone and writes it
with a single UPDATE on billing_accounts.

Unknown and informational kinds are a successful no-op.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.config import settings
from reconciler.models.billing_account import BillingAccount
from reconciler.models.enums import BillingProvider, SubscriptionStatus, SubscriptionTier
from reconciler.schemas.events import BillingEventKind, NormalizedBillingEvent
from reconciler.schemas.parsing import parse_webhook_body
from reconciler.services.account_resolver import AccountResolver, Resolution
from reconciler.services.status_mapper import map_status
from reconciler.utils.error_handling import AccountResolutionException

logger = logging.getLogger(__name__)

# Provider statuses for a subscription that has ended for good
TERMINAL_STATUSES = {
    BillingProvider.STRIPE: {"canceled", "incomplete_expired"},
    BillingProvider.LEMONSQUEEZY: {"expired"},
}

# Ended unless the provider still reports a future period end
LAPSED_STATUSES = {
    BillingProvider.STRIPE: {"unpaid"},
}


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class DispatchResult:
    """Result of dispatching one event."""
    kind: BillingEventKind
    handled: bool
    resolved_user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "handled": self.handled,
            "resolved_user_id": self.resolved_user_id,
        }


def _parse_tier(value: Optional[str]) -> Optional[SubscriptionTier]:
    if not value:
        return None
    try:
        return SubscriptionTier(value.lower())
    except ValueError:
        logger.warning(f"Ignoring unknown tier '{value}' in event metadata")
        return None


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# =============================================================================
# DISPATCHER
# =============================================================================

class EventDispatcher:
    """Applies normalized billing events to billing accounts."""

    def __init__(
        self,
        db: AsyncSession,
        default_paid_tier: Optional[str] = None,
        require_account_kinds: Optional[Iterable[str]] = None,
    ):
        self.db = db
        self.resolver = AccountResolver(db)
        self.default_paid_tier = (
            _parse_tier(default_paid_tier or settings.default_paid_tier) or SubscriptionTier.PRO
        )
        kinds = (
            require_account_kinds
            if require_account_kinds is not None
            else settings.require_account_event_kinds
        )
        self.require_account_kinds = {k.lower() for k in kinds}

        self._handlers = {
            BillingEventKind.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            BillingEventKind.SUBSCRIPTION_CREATED: self._handle_subscription_changed,
            BillingEventKind.SUBSCRIPTION_UPDATED: self._handle_subscription_changed,
            BillingEventKind.SUBSCRIPTION_CANCELLED: self._handle_subscription_cancelled,
            BillingEventKind.SUBSCRIPTION_EXPIRED: self._handle_subscription_expired,
            BillingEventKind.SUBSCRIPTION_RESUMED: self._handle_subscription_resumed,
            BillingEventKind.SUBSCRIPTION_PAUSED: self._handle_subscription_paused,
            BillingEventKind.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            BillingEventKind.PAYMENT_RECOVERED: self._handle_payment_recovered,
            BillingEventKind.PAYMENT_FAILED: self._handle_payment_failed,
            BillingEventKind.ORDER_REFUNDED: self._handle_order_refunded,
        }

    async def dispatch(self, provider: BillingProvider, event_type: str, payload: bytes) -> DispatchResult:
        """
        Parse a raw provider payload and apply it.

        Raises:
            WebhookPayloadException: payload does not validate
        """
        event = parse_webhook_body(provider, payload)
        if event.event_type != event_type:
            logger.warning(
                f"Stored event type {event_type} differs from payload type {event.event_type}"
            )
        return await self.handle(event)

    async def handle(self, event: NormalizedBillingEvent) -> DispatchResult:
        """Apply a normalized event. Handler exceptions propagate to the caller."""
        if event.kind == BillingEventKind.UNKNOWN:
            logger.info(f"Unhandled {event.provider.value} event type: {event.event_type}")
            return DispatchResult(kind=event.kind, handled=False)

        if event.test_mode:
            logger.info(f"Processing {event.provider.value} test-mode event {event.event_id}")

        if not event.is_mutating:
            return await self._handle_informational(event)

        resolution = await self.resolver.resolve(
            event.provider,
            user_id=event.user_id,
            subscription_id=event.subscription_id,
            customer_id=event.customer_id,
        )
        if not resolution.resolved:
            if event.kind.value in self.require_account_kinds:
                raise AccountResolutionException(event.provider.value, event.event_type)
            logger.warning(
                f"{event.event_type} ({event.event_id}) matched no billing account; nothing to update"
            )
            return DispatchResult(kind=event.kind, handled=False)

        logger.debug(
            f"{event.event_type} resolved to user {resolution.user_id} via {resolution.source.value}"
        )
        handler = self._handlers[event.kind]
        handled = await handler(event, resolution.account)
        return DispatchResult(kind=event.kind, handled=handled, resolved_user_id=resolution.user_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _apply(self, account: BillingAccount, *conditions, **values) -> bool:
        stmt = (
            update(BillingAccount)
            .where(BillingAccount.id == account.id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    def _is_other_subscription(event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        """An event about a subscription the account has already moved away from."""
        return bool(
            event.subscription_id
            and account.external_subscription_id
            and account.provider == event.provider
            and account.external_subscription_id != event.subscription_id
        )

    @staticmethod
    def _has_ended(event: NormalizedBillingEvent, status: SubscriptionStatus) -> bool:
        """A created/updated event that reports a subscription with no access left."""
        raw = (event.raw_status or "").lower()
        if raw in TERMINAL_STATUSES.get(event.provider, ()):
            return True
        period_over = (
            event.period_end is None
            or _as_aware(event.period_end) <= datetime.now(timezone.utc)
        )
        if raw in LAPSED_STATUSES.get(event.provider, ()):
            return period_over
        return status == SubscriptionStatus.CANCELLED and not event.cancel_at_period_end and period_over

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _handle_informational(self, event: NormalizedBillingEvent) -> DispatchResult:
        resolution = Resolution()
        if event.user_id or event.subscription_id or event.customer_id:
            resolution = await self.resolver.resolve(
                event.provider,
                user_id=event.user_id,
                subscription_id=event.subscription_id,
                customer_id=event.customer_id,
            )
        logger.info(f"{event.event_type} acknowledged without changes")
        return DispatchResult(kind=event.kind, handled=False, resolved_user_id=resolution.user_id)

    async def _handle_checkout_completed(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        tier = _parse_tier(event.tier) or self.default_paid_tier
        values = {
            "provider": event.provider,
            "tier": tier,
            "status": SubscriptionStatus.ACTIVE,
        }
        switching = account.provider != event.provider
        # IDs from a previous provider would resolve the wrong events
        if event.customer_id or switching:
            values["external_customer_id"] = event.customer_id
        if event.subscription_id or switching:
            values["external_subscription_id"] = event.subscription_id

        logger.info(f"Checkout completed for user {account.user_id}, tier: {tier.value}")
        return await self._apply(account, **values)

    async def _handle_subscription_changed(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        status = map_status(event.provider, event.raw_status)
        if (
            status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.SUSPENDED)
            and self._is_other_subscription(event, account)
        ):
            logger.info(f"Ignoring {status.value} update for superseded subscription {event.subscription_id}")
            return False
        if self._has_ended(event, status):
            return await self._handle_subscription_expired(event, account)

        if event.cancel_at_period_end and status != SubscriptionStatus.CANCELLED:
            # Scheduled cancellation: access continues until period_end
            status = SubscriptionStatus.CANCELLED

        tier = _parse_tier(event.tier)
        if tier is None:
            tier = account.tier
            if tier == SubscriptionTier.FREE and status != SubscriptionStatus.CANCELLED:
                tier = self.default_paid_tier

        values = {
            "provider": event.provider,
            "tier": tier,
            "status": status,
            "external_subscription_id": event.subscription_id,
        }
        if event.customer_id:
            values["external_customer_id"] = event.customer_id
        if event.period_end is not None:
            values["period_end"] = event.period_end

        logger.info(
            f"Updated subscription for user {account.user_id}: tier={tier.value}, status={status.value}"
        )
        return await self._apply(account, **values)

    async def _handle_subscription_cancelled(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        if self._is_other_subscription(event, account):
            logger.info(f"Ignoring cancellation of superseded subscription {event.subscription_id}")
            return False

        ends_at = event.period_end
        if ends_at is None or _as_aware(ends_at) <= datetime.now(timezone.utc):
            return await self._handle_subscription_expired(event, account)

        logger.info(f"Subscription cancelled for user {account.user_id}, access until {ends_at.isoformat()}")
        return await self._apply(
            account,
            status=SubscriptionStatus.CANCELLED,
            period_end=ends_at,
        )

    async def _handle_subscription_expired(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        if self._is_other_subscription(event, account):
            logger.info(f"Ignoring expiry of superseded subscription {event.subscription_id}")
            return False

        values = {
            "tier": SubscriptionTier.FREE,
            "status": SubscriptionStatus.CANCELLED,
            "external_subscription_id": None,
        }
        if event.period_end is not None:
            # Access never outlives the end of the subscription
            values["period_end"] = min(_as_aware(event.period_end), datetime.now(timezone.utc))

        logger.info(f"Subscription ended for user {account.user_id}, downgraded to free")
        return await self._apply(account, **values)

    async def _handle_subscription_resumed(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        values = {"status": SubscriptionStatus.ACTIVE}
        if event.period_end is not None:
            values["period_end"] = event.period_end
        if event.subscription_id:
            values["external_subscription_id"] = event.subscription_id
        return await self._apply(account, **values)

    async def _handle_subscription_paused(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        if self._is_other_subscription(event, account):
            return False
        return await self._apply(account, status=SubscriptionStatus.SUSPENDED)

    async def _handle_payment_succeeded(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        if event.provider == BillingProvider.STRIPE and not event.subscription_id:
            logger.info("Payment succeeded without a subscription (one-time payment)")
            return False

        values = {"status": SubscriptionStatus.ACTIVE}
        if event.period_end is not None:
            values["period_end"] = event.period_end

        # Only promote; an already-active account keeps its state
        return await self._apply(
            account,
            BillingAccount.status != SubscriptionStatus.ACTIVE,
            BillingAccount.tier != SubscriptionTier.FREE,
            **values,
        )

    async def _handle_payment_recovered(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        logger.info(f"Payment recovered for user {account.user_id}")
        return await self._apply(account, status=SubscriptionStatus.ACTIVE)

    async def _handle_payment_failed(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        if event.provider == BillingProvider.STRIPE and not event.subscription_id:
            return False

        logger.warning(f"Payment failed for user {account.user_id}")
        return await self._apply(account, status=SubscriptionStatus.PAST_DUE)

    async def _handle_order_refunded(self, event: NormalizedBillingEvent, account: BillingAccount) -> bool:
        logger.info(f"Order refunded for user {account.user_id}")
        return await self._apply(
            account,
            tier=SubscriptionTier.FREE,
            status=SubscriptionStatus.CANCELLED,
            period_end=datetime.now(timezone.utc),
        )
