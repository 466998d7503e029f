"""
Subscription Reconciler - Reconciliation Engine

Drives one webhook delivery through

    RECEIVED -> VERIFIED -> DEDUP_CHECKED -> DISPATCHED -> LEDGER_FINALIZED

with exits to REJECTED (signature or payload problems, nothing recorded) and
FAILED (processing error, ledger marked failed, provider asked to retry).

Transactions:
- ledger registration is committed on its own so concurrent deliveries see the claim
- account mutation and the ledger success transition commit together
- on failure the partial work is rolled back before the ledger is marked failed
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.config import settings
from reconciler.models.enums import BillingProvider, ProcessingStatus
from reconciler.schemas.parsing import parse_webhook_body
from reconciler.services.dispatcher import DispatchResult, EventDispatcher
from reconciler.services.event_store import EventStore
from reconciler.services.signature_service import (
    verify_lemonsqueezy_signature_with_result,
    verify_stripe_signature_with_result,
)
from reconciler.utils.error_handling import (
    AppException,
    EventInProgressException,
    NotFoundException,
    WebhookPayloadException,
    WebhookProcessingException,
    WebhookSignatureException,
)

logger = logging.getLogger(__name__)


class ReconciliationStage(str, Enum):
    """Per-request processing stage."""
    RECEIVED = "received"
    VERIFIED = "verified"
    DEDUP_CHECKED = "dedup_checked"
    DISPATCHED = "dispatched"
    LEDGER_FINALIZED = "ledger_finalized"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class WebhookOutcome:
    """Result of a delivery that was accepted."""
    event_id: str
    event_type: str
    stage: ReconciliationStage
    duplicate: bool = False
    dispatch: Optional[DispatchResult] = None
    history: list = field(default_factory=list)

    @property
    def resolved_user_id(self) -> Optional[str]:
        return self.dispatch.resolved_user_id if self.dispatch else None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True, "eventType": self.event_type}
        if self.duplicate:
            body["message"] = "Already processed"
        return body


class ReconciliationEngine:
    """Verifies, deduplicates, dispatches and records webhook deliveries."""

    def __init__(
        self,
        db: AsyncSession,
        event_store: Optional[EventStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.db = db
        self.event_store = event_store or EventStore(db)
        self.dispatcher = dispatcher or EventDispatcher(db)

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def process(
        self,
        provider: BillingProvider,
        body: bytes,
        signature: Optional[str],
    ) -> WebhookOutcome:
        """
        Process one inbound delivery.

        Raises:
            WebhookSignatureException: missing or invalid signature (400)
            WebhookPayloadException: malformed body (400)
            EventInProgressException: same event is being processed elsewhere (409)
            WebhookProcessingException: dispatch failed, ledger marked failed (500)
        """
        history = [ReconciliationStage.RECEIVED]

        self._verify_signature(provider, body, signature)
        history.append(ReconciliationStage.VERIFIED)

        event = parse_webhook_body(provider, body)
        logger.info(f"Received {provider.value} event {event.event_type} ({event.event_id})")

        registration = await self.event_store.check_and_register(
            provider,
            event.event_id,
            event.event_type,
            body.decode("utf-8"),
        )
        await self.db.commit()
        history.append(ReconciliationStage.DEDUP_CHECKED)

        if registration.already_processed:
            logger.info(f"{provider.value} event {event.event_id} already processed, skipping")
            return WebhookOutcome(
                event_id=event.event_id,
                event_type=event.event_type,
                stage=ReconciliationStage.DEDUP_CHECKED,
                duplicate=True,
                history=history,
            )
        if registration.in_progress:
            raise EventInProgressException(provider.value, event.event_id)

        return await self._dispatch_and_finalize(
            provider,
            event.event_id,
            event.event_type,
            lambda: self.dispatcher.handle(event),
            history,
        )

    async def replay(self, provider: BillingProvider, event_id: str) -> WebhookOutcome:
        """
        Re-run a recorded event that has not completed, from its stored payload.

        The payload was authenticated when it was first received.
        """
        record = await self.event_store.get_event(provider, event_id)
        if record is None:
            raise NotFoundException("Webhook event", event_id)

        history = [ReconciliationStage.RECEIVED, ReconciliationStage.VERIFIED]
        registration = await self.event_store.check_and_register(
            provider, event_id, record.event_type, record.payload
        )
        await self.db.commit()
        history.append(ReconciliationStage.DEDUP_CHECKED)

        if registration.already_processed:
            return WebhookOutcome(
                event_id=event_id,
                event_type=record.event_type,
                stage=ReconciliationStage.DEDUP_CHECKED,
                duplicate=True,
                history=history,
            )
        if registration.in_progress:
            raise EventInProgressException(provider.value, event_id)

        logger.info(f"Replaying {provider.value} event {event_id} ({record.event_type})")
        payload = record.payload.encode("utf-8")
        return await self._dispatch_and_finalize(
            provider,
            event_id,
            record.event_type,
            lambda: self.dispatcher.dispatch(provider, record.event_type, payload),
            history,
        )

    # =========================================================================
    # STAGES
    # =========================================================================

    def _verify_signature(self, provider: BillingProvider, body: bytes, signature: Optional[str]) -> None:
        if provider == BillingProvider.STRIPE:
            check = verify_stripe_signature_with_result(
                body,
                signature,
                settings.stripe_webhook_secret,
                settings.stripe_webhook_tolerance_seconds,
            )
        elif provider == BillingProvider.LEMONSQUEEZY:
            check = verify_lemonsqueezy_signature_with_result(
                body,
                signature,
                settings.lemonsqueezy_webhook_secret,
            )
        else:
            raise WebhookPayloadException(provider.value, "Unsupported provider")

        if check.valid:
            return

        excerpt = body[: settings.webhook_log_payload_chars].decode("utf-8", errors="replace")
        logger.warning(
            f"Rejected {provider.value} webhook: {check.error}. Payload: {excerpt}"
        )
        raise WebhookSignatureException(provider.value, missing=not signature)

    async def _dispatch_and_finalize(
        self,
        provider: BillingProvider,
        event_id: str,
        event_type: str,
        run: Callable[[], Awaitable[DispatchResult]],
        history: list,
    ) -> WebhookOutcome:
        try:
            result = await run()
            history.append(ReconciliationStage.DISPATCHED)
            await self.event_store.mark_complete(
                provider,
                event_id,
                ProcessingStatus.SUCCESS,
                resolved_user_id=result.resolved_user_id,
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            history.append(ReconciliationStage.FAILED)
            logger.error(
                f"Error processing {provider.value} event {event_type} ({event_id}): {e}",
                exc_info=True,
            )
            await self.event_store.mark_complete(
                provider,
                event_id,
                ProcessingStatus.FAILED,
                error_message=str(e) or type(e).__name__,
            )
            await self.db.commit()
            if isinstance(e, AppException):
                raise
            raise WebhookProcessingException(provider.value, event_id, original_error=e) from e

        history.append(ReconciliationStage.LEDGER_FINALIZED)
        user_note = f" for user {result.resolved_user_id}" if result.resolved_user_id else ""
        logger.info(f"Successfully processed {event_type}{user_note}")
        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            stage=ReconciliationStage.LEDGER_FINALIZED,
            dispatch=result,
            history=history,
        )
