"""Create billing_accounts and webhook_events tables

Revision ID: 20261018_0900_billing
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20261018_0900_billing'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TIERS = ('free', 'pro', 'enterprise')
STATUSES = ('active', 'trialing', 'past_due', 'cancelled', 'suspended')
PROVIDERS = ('none', 'stripe', 'lemonsqueezy')
PROCESSING_STATUSES = ('pending', 'success', 'failed')


def upgrade() -> None:
    # =====================================================
    # BILLING ACCOUNTS
    # =====================================================
    op.create_table(
        'billing_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('tier', sa.Enum(*TIERS, name='subscriptiontier'), nullable=False),
        sa.Column('status', sa.Enum(*STATUSES, name='subscriptionstatus'), nullable=False),
        sa.Column('provider', sa.Enum(*PROVIDERS, name='billingprovider'), nullable=False),
        sa.Column('external_customer_id', sa.String(length=255), nullable=True,
                  comment='Stripe customer ID or Lemon Squeezy customer ID'),
        sa.Column('external_subscription_id', sa.String(length=255), nullable=True,
                  comment='Stripe subscription ID or Lemon Squeezy subscription ID'),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_billing_accounts')),
    )
    op.create_index(op.f('ix_billing_accounts_user_id'), 'billing_accounts', ['user_id'], unique=True)
    op.create_index(op.f('ix_billing_accounts_external_customer_id'), 'billing_accounts', ['external_customer_id'])
    op.create_index(op.f('ix_billing_accounts_external_subscription_id'), 'billing_accounts', ['external_subscription_id'])

    # =====================================================
    # WEBHOOK EVENT LEDGER
    # =====================================================
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        # billingprovider type was created with billing_accounts
        sa.Column('provider', postgresql.ENUM(*PROVIDERS, name='billingprovider', create_type=False), nullable=False),
        sa.Column('external_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processing_status', sa.Enum(*PROCESSING_STATUSES, name='processingstatus'), nullable=False),
        sa.Column('resolved_user_id', sa.String(length=255), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_webhook_events')),
        sa.UniqueConstraint('provider', 'external_event_id', name='uq_webhook_events_provider_event'),
    )
    op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'])
    op.create_index(op.f('ix_webhook_events_processing_status'), 'webhook_events', ['processing_status'])


def downgrade() -> None:
    op.drop_index(op.f('ix_webhook_events_processing_status'), table_name='webhook_events')
    op.drop_index(op.f('ix_webhook_events_event_type'), table_name='webhook_events')
    op.drop_table('webhook_events')

    op.drop_index(op.f('ix_billing_accounts_external_subscription_id'), table_name='billing_accounts')
    op.drop_index(op.f('ix_billing_accounts_external_customer_id'), table_name='billing_accounts')
    op.drop_index(op.f('ix_billing_accounts_user_id'), table_name='billing_accounts')
    op.drop_table('billing_accounts')

    op.execute('DROP TYPE IF EXISTS processingstatus')
    op.execute('DROP TYPE IF EXISTS billingprovider')
    op.execute('DROP TYPE IF EXISTS subscriptionstatus')
    op.execute('DROP TYPE IF EXISTS subscriptiontier')
