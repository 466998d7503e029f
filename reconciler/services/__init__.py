"""
Subscription Reconciler - Services Package

Business logic services.
"""

from reconciler.services.account_resolver import AccountResolver, Resolution, ResolutionSource
from reconciler.services.dispatcher import DispatchResult, EventDispatcher
from reconciler.services.event_store import EventStore, RegistrationResult
from reconciler.services.reconciliation_service import (
    ReconciliationEngine,
    ReconciliationStage,
    WebhookOutcome,
)
from reconciler.services.signature_service import (
    SignatureCheck,
    verify_lemonsqueezy_signature,
    verify_lemonsqueezy_signature_with_result,
    verify_stripe_signature,
    verify_stripe_signature_with_result,
)
from reconciler.services.status_mapper import (
    map_lemonsqueezy_status,
    map_status,
    map_stripe_status,
)
from reconciler.services.subscription_view import (
    SubscriptionData,
    can_cancel_subscription,
    can_upgrade,
    has_active_subscription,
)
