"""
Subscription Reconciler - Webhook Event Ledger Model

Every inbound provider event is recorded once per (provider, external_event_id).
The unique constraint on that pair is what makes processing idempotent.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from reconciler.models.base import BaseModel
from reconciler.models.enums import BillingProvider, ProcessingStatus


class WebhookEventRecord(BaseModel):
    """
    Idempotency ledger entry for one provider event.

    Lifecycle: pending on first sight, then success (processed) or failed
    (retry allowed). Entries are never deleted.
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "external_event_id", name="uq_webhook_events_provider_event"),
    )

    provider: Mapped[BillingProvider] = mapped_column(
        SQLEnum(BillingProvider, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    external_event_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )

    # Raw body as received, for audit and replay
    payload: Mapped[str] = mapped_column(Text, nullable=False)

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        SQLEnum(ProcessingStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProcessingStatus.PENDING,
        index=True,
    )

    resolved_user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Claim bookkeeping
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<WebhookEventRecord(provider={self.provider}, event={self.external_event_id}, "
            f"status={self.processing_status})>"
        )
