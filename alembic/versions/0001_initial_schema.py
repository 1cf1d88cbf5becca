"""Initial schema - users, items, claims, chat and settlement

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-01

Creates every table the claim lifecycle, chat log and settlement
flow need. Column types are portable so the same revision runs on
PostgreSQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


CLAIM_STATUSES = "'pending', 'accepted', 'rejected', 'paid', 'shipped', 'delivered'"
PAYMENT_STATUSES = "'pending', 'succeeded', 'failed', 'canceled', 'refund_due'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables."""

    # ==========================================================================
    # Users
    # ==========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('token_version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ==========================================================================
    # Items & Claims
    # ==========================================================================
    op.create_table(
        'items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'owner_user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_claimed', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        *_timestamps(),
    )
    op.create_index('ix_items_owner_user_id', 'items', ['owner_user_id'])

    op.create_table(
        'claims',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'item_id', sa.Uuid(),
            sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'claimer_user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('claimer_name', sa.String(100), nullable=False),
        sa.Column('claimer_email', sa.String(255), nullable=False),
        sa.Column('claimer_phone', sa.String(50), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('room_id', sa.String(100), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(f"status IN ({CLAIM_STATUSES})", name='ck_claims_status'),
    )
    op.create_index('ix_claims_claimer_user_id', 'claims', ['claimer_user_id'])
    op.create_index('idx_claims_item_status', 'claims', ['item_id', 'status'])
    op.create_index('idx_claims_claimer_email', 'claims', ['claimer_email'])

    # ==========================================================================
    # Chat log
    # ==========================================================================
    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'room_id', sa.String(100),
            sa.ForeignKey('claims.room_id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'sender_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('sender_name', sa.String(100), nullable=False),
        sa.Column('sender_email', sa.String(255), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_chat_room_created', 'chat_messages', ['room_id', 'created_at'])
    op.create_index('idx_chat_room_unread', 'chat_messages', ['room_id', 'is_read'])

    # ==========================================================================
    # Settlement
    # ==========================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'claim_id', sa.Uuid(),
            sa.ForeignKey('claims.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'payer_user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('payer_email', sa.String(255), nullable=False),
        sa.Column('recipient_user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('shipping_fee', sa.Integer(), nullable=False),
        sa.Column('tip_amount', sa.Integer(), nullable=False),
        sa.Column('platform_fee_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('external_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(f"status IN ({PAYMENT_STATUSES})", name='ck_payments_status'),
        sa.CheckConstraint('amount = shipping_fee + tip_amount', name='ck_payments_amount'),
        sa.CheckConstraint(
            'platform_fee_amount >= 0 AND platform_fee_amount <= amount',
            name='ck_payments_platform_fee',
        ),
    )
    op.create_index('idx_payments_claim_created', 'payments', ['claim_id', 'created_at'])
    # At most one settled payment per claim
    op.create_index(
        'uq_payments_claim_succeeded',
        'payments',
        ['claim_id'],
        unique=True,
        postgresql_where=sa.text("status = 'succeeded'"),
        sqlite_where=sa.text("status = 'succeeded'"),
    )

    op.create_table(
        'shipping_details',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'payment_id', sa.Uuid(),
            sa.ForeignKey('payments.id', ondelete='CASCADE'), nullable=False, unique=True,
        ),
        sa.Column('address_line1', sa.Text(), nullable=False),
        sa.Column('address_line2', sa.Text(), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(100), nullable=False),
        sa.Column('postal_code', sa.String(20), nullable=False),
        sa.Column('country', sa.String(2), nullable=False),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('shipping_provider', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'shipping_configs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'item_id', sa.Uuid(),
            sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=True,
        ),
        sa.Column(
            'claim_id', sa.Uuid(),
            sa.ForeignKey('claims.id', ondelete='CASCADE'), nullable=True,
        ),
        sa.Column('default_fee', sa.Integer(), nullable=False),
        sa.Column('min_fee', sa.Integer(), nullable=False),
        sa.Column('max_fee', sa.Integer(), nullable=False),
        sa.Column('allow_custom_fee', sa.Boolean(), nullable=False),
        sa.Column('allow_tipping', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'min_fee >= 0 AND min_fee <= default_fee AND default_fee <= max_fee',
            name='ck_shipping_configs_fee_bounds',
        ),
    )
    op.create_index('idx_shipping_configs_user', 'shipping_configs', ['user_id'])
    op.create_index('uq_shipping_configs_claim', 'shipping_configs', ['claim_id'], unique=True)
    op.create_index('uq_shipping_configs_item', 'shipping_configs', ['item_id'], unique=True)

    op.create_table(
        'payout_accounts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'user_id', sa.Uuid(),
            sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True,
        ),
        sa.Column('external_account_id', sa.String(255), nullable=True, unique=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('onboarded', sa.Boolean(), nullable=False),
        sa.Column('onboarding_completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'processor_webhook_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider_event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop all tables in dependency order."""
    op.drop_table('processor_webhook_events')
    op.drop_table('payout_accounts')
    op.drop_index('uq_shipping_configs_item', table_name='shipping_configs')
    op.drop_index('uq_shipping_configs_claim', table_name='shipping_configs')
    op.drop_index('idx_shipping_configs_user', table_name='shipping_configs')
    op.drop_table('shipping_configs')
    op.drop_table('shipping_details')
    op.drop_index('uq_payments_claim_succeeded', table_name='payments')
    op.drop_index('idx_payments_claim_created', table_name='payments')
    op.drop_table('payments')
    op.drop_index('idx_chat_room_unread', table_name='chat_messages')
    op.drop_index('idx_chat_room_created', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('idx_claims_claimer_email', table_name='claims')
    op.drop_index('idx_claims_item_status', table_name='claims')
    op.drop_index('ix_claims_claimer_user_id', table_name='claims')
    op.drop_table('claims')
    op.drop_index('ix_items_owner_user_id', table_name='items')
    op.drop_table('items')
    op.drop_table('users')
