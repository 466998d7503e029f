"""
Subscription Reconciler - Event Store

Idempotency ledger for webhook deliveries. Registration is a single atomic
INSERT ... ON CONFLICT DO NOTHING on (provider, external_event_id), followed
for existing rows by a conditional UPDATE that claims a retry. Two concurrent
deliveries of the same event can therefore never both be dispatched.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.config import settings
from reconciler.models.enums import BillingProvider, ProcessingStatus
from reconciler.models.webhook_event import WebhookEventRecord

logger = logging.getLogger(__name__)

# error_message column is Text, but keep stored tracebacks readable
MAX_ERROR_MESSAGE_LENGTH = 2000


@dataclass
class RegistrationResult:
    """
    Outcome of check_and_register.

    already_processed: the event completed successfully before; skip it.
    claimed: this caller owns the attempt and must finalize it.
    Neither flag set means another delivery is processing the event right now.
    """
    already_processed: bool
    claimed: bool

    @property
    def in_progress(self) -> bool:
        return not self.already_processed and not self.claimed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStore:
    """Ledger operations over WebhookEventRecord."""

    def __init__(self, db: AsyncSession, lease_seconds: Optional[int] = None):
        self.db = db
        self.lease_seconds = (
            lease_seconds if lease_seconds is not None else settings.webhook_processing_lease_seconds
        )

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    async def check_and_register(
        self,
        provider: BillingProvider,
        event_id: str,
        event_type: str,
        payload: str,
    ) -> RegistrationResult:
        """
        Atomically register an event or claim a retry of it.

        The caller commits the session afterwards so the claim is visible to
        concurrent deliveries before dispatch starts.
        """
        now = utcnow()

        if await self._insert_if_absent(provider, event_id, event_type, payload, now):
            logger.debug(f"Registered {provider.value} event {event_id} ({event_type})")
            return RegistrationResult(already_processed=False, claimed=True)

        if await self._claim_retry(provider, event_id, event_type, now):
            logger.info(f"Claimed retry of {provider.value} event {event_id} ({event_type})")
            return RegistrationResult(already_processed=False, claimed=True)

        record = await self.get_event(provider, event_id)
        if record is not None and record.processed:
            return RegistrationResult(already_processed=True, claimed=False)

        logger.info(f"{provider.value} event {event_id} is being processed by another delivery")
        return RegistrationResult(already_processed=False, claimed=False)

    async def _insert_if_absent(
        self,
        provider: BillingProvider,
        event_id: str,
        event_type: str,
        payload: str,
        now: datetime,
    ) -> bool:
        values = dict(
            id=uuid.uuid4(),
            provider=provider,
            external_event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False,
            processing_status=ProcessingStatus.PENDING,
            attempt_count=1,
            last_attempt_at=now,
        )

        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            return await self._insert_with_savepoint(values)

        stmt = (
            insert(WebhookEventRecord)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["provider", "external_event_id"])
            .returning(WebhookEventRecord.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _insert_with_savepoint(self, values: dict) -> bool:
        """Fallback for backends without ON CONFLICT: let the unique constraint decide."""
        try:
            async with self.db.begin_nested():
                self.db.add(WebhookEventRecord(**values))
        except IntegrityError:
            return False
        return True

    async def _claim_retry(
        self,
        provider: BillingProvider,
        event_id: str,
        event_type: str,
        now: datetime,
    ) -> bool:
        lease_cutoff = now - timedelta(seconds=self.lease_seconds)
        stmt = (
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.provider == provider,
                WebhookEventRecord.external_event_id == event_id,
                WebhookEventRecord.processed.is_(False),
                or_(
                    WebhookEventRecord.processing_status == ProcessingStatus.FAILED,
                    WebhookEventRecord.last_attempt_at < lease_cutoff,
                ),
            )
            .values(
                event_type=event_type,
                processing_status=ProcessingStatus.PENDING,
                attempt_count=WebhookEventRecord.attempt_count + 1,
                last_attempt_at=now,
                error_message=None,
            )
            .returning(WebhookEventRecord.id)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    # =========================================================================
    # FINALIZATION
    # =========================================================================

    async def mark_complete(
        self,
        provider: BillingProvider,
        event_id: str,
        status: ProcessingStatus,
        resolved_user_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Record the terminal state of the current attempt.

        SUCCESS sets processed; FAILED leaves it unset so the next delivery may retry.
        """
        if status == ProcessingStatus.PENDING:
            raise ValueError("mark_complete requires a terminal status")

        if error_message and len(error_message) > MAX_ERROR_MESSAGE_LENGTH:
            error_message = error_message[:MAX_ERROR_MESSAGE_LENGTH]

        stmt = (
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.provider == provider,
                WebhookEventRecord.external_event_id == event_id,
            )
            .values(
                processed=status == ProcessingStatus.SUCCESS,
                processing_status=status,
                resolved_user_id=resolved_user_id,
                error_message=error_message,
                processed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_event(self, provider: BillingProvider, event_id: str) -> Optional[WebhookEventRecord]:
        result = await self.db.execute(
            select(WebhookEventRecord)
            .where(
                WebhookEventRecord.provider == provider,
                WebhookEventRecord.external_event_id == event_id,
            )
            # Ledger rows are changed with bulk UPDATEs; refresh anything cached
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_events(
        self,
        provider: Optional[BillingProvider] = None,
        status: Optional[ProcessingStatus] = None,
        limit: int = 50,
    ) -> List[WebhookEventRecord]:
        """List ledger entries, newest first."""
        query = select(WebhookEventRecord)
        if provider is not None:
            query = query.where(WebhookEventRecord.provider == provider)
        if status is not None:
            query = query.where(WebhookEventRecord.processing_status == status)
        query = query.order_by(WebhookEventRecord.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
