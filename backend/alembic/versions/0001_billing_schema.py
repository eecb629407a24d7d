"""Billing ledger schema

Revision ID: 0001_billing_schema
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_billing_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def _money(name: str):
    return sa.Column(name, sa.Numeric(10, 2), server_default='0.00', nullable=False)


def _currency():
    return sa.Column('currency', sa.String(3), server_default='INR', nullable=False)


def upgrade() -> None:
    """Create catalog, ledger and webhook audit tables."""

    # Catalog
    op.create_table(
        'users',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255), index=True),
        sa.Column('name', sa.String(255)),
        sa.Column('role', sa.String(20), server_default='user', nullable=False),
        *_timestamps(),
    )
    op.create_table(
        'pricing_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
        _money('price'),
        _currency(),
        sa.Column('interval', sa.String(10), server_default='month', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        'podcasts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('is_free', sa.Boolean(), server_default=sa.false(), nullable=False),
        _money('price'),
        _currency(),
        *_timestamps(),
    )
    op.create_table(
        'playlists',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        _money('price'),
        _currency(),
        sa.Column('is_public', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        'merch_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        _money('price'),
        _currency(),
        sa.Column('in_stock', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
    )

    # Subscriptions and purchases
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('plan_id', sa.Uuid(), sa.ForeignKey('pricing_plans.id'), nullable=False, index=True),
        sa.Column('status', sa.String(30), server_default='active', nullable=False, index=True),
        _money('amount'),
        _currency(),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False, index=True),
        sa.Column('pending_plan_id', sa.Uuid(), sa.ForeignKey('pricing_plans.id')),
        sa.Column('cancel_at_period_end', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime()),
        sa.Column('gateway_order_id', sa.String(255), index=True),
        sa.Column('gateway_payment_id', sa.String(255), index=True),
        sa.Column('gateway_subscription_id', sa.String(255), index=True),
        *_timestamps(),
    )
    # At most one grant-access subscription per user
    op.create_index(
        'uq_subscriptions_user_grant_access',
        'subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'pending_downgrade')"),
    )

    op.create_table(
        'purchases',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('podcast_id', sa.Uuid(), sa.ForeignKey('podcasts.id'), index=True),
        sa.Column('playlist_id', sa.Uuid(), sa.ForeignKey('playlists.id'), index=True),
        _money('amount'),
        _currency(),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('gateway_order_id', sa.String(255), index=True),
        sa.Column('gateway_payment_id', sa.String(255), index=True),
        sa.Column('gateway_signature', sa.String(255)),
        *_timestamps(),
    )
    # One completed purchase per user and item
    op.create_index(
        'uq_purchases_user_podcast_completed',
        'purchases',
        ['user_id', 'podcast_id'],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )
    op.create_index(
        'uq_purchases_user_playlist_completed',
        'purchases',
        ['user_id', 'playlist_id'],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )

    # Merchandise orders
    op.create_table(
        'merch_orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        _money('total_amount'),
        _currency(),
        sa.Column('shipping_name', sa.String(200), nullable=False),
        sa.Column('shipping_phone', sa.String(20), nullable=False),
        sa.Column('shipping_address', sa.String(500), nullable=False),
        sa.Column('shipping_city', sa.String(100), nullable=False),
        sa.Column('shipping_state', sa.String(100), nullable=False),
        sa.Column('shipping_postal_code', sa.String(12), nullable=False),
        sa.Column('gateway_order_id', sa.String(255), index=True),
        sa.Column('gateway_payment_id', sa.String(255)),
        *_timestamps(),
    )
    op.create_table(
        'merch_order_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('merch_orders.id'), nullable=False, index=True),
        sa.Column('merch_item_id', sa.Uuid(), sa.ForeignKey('merch_items.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default='1', nullable=False),
        _money('price_at_purchase'),
        *_timestamps(),
    )

    # Payment history (append-only audit)
    op.create_table(
        'payment_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('type', sa.String(30), nullable=False),
        _money('amount'),
        _currency(),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('gateway_order_id', sa.String(255), index=True),
        sa.Column('gateway_payment_id', sa.String(255), index=True),
        sa.Column('gateway_signature', sa.String(255)),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('ref_type', sa.String(30)),
        sa.Column('ref_id', sa.Uuid(), index=True),
        *_timestamps(),
    )

    # Refund requests
    op.create_table(
        'refund_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('payment_history_id', sa.Uuid(), sa.ForeignKey('payment_history.id'), index=True),
        sa.Column('subscription_id', sa.Uuid(), sa.ForeignKey('subscriptions.id')),
        sa.Column('purchase_id', sa.Uuid(), sa.ForeignKey('purchases.id')),
        _money('amount'),
        _currency(),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False, index=True),
        sa.Column('gateway_refund_id', sa.String(255), index=True),
        sa.Column('processed_by', sa.String(255)),
        sa.Column('processed_at', sa.DateTime()),
        sa.Column('admin_notes', sa.Text()),
        *_timestamps(),
    )
    # One pending request per subscription and per purchase
    op.create_index(
        'uq_refund_requests_pending_subscription',
        'refund_requests',
        ['subscription_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index(
        'uq_refund_requests_pending_purchase',
        'refund_requests',
        ['purchase_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Webhook audit / idempotency
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_id', sa.String(255), unique=True, index=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('outcome', sa.String(20), server_default='processed', nullable=False),
        sa.Column('error', sa.Text()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_index('uq_refund_requests_pending_purchase', table_name='refund_requests')
    op.drop_index('uq_refund_requests_pending_subscription', table_name='refund_requests')
    op.drop_table('refund_requests')
    op.drop_table('payment_history')
    op.drop_table('merch_order_items')
    op.drop_table('merch_orders')
    op.drop_index('uq_purchases_user_playlist_completed', table_name='purchases')
    op.drop_index('uq_purchases_user_podcast_completed', table_name='purchases')
    op.drop_table('purchases')
    op.drop_index('uq_subscriptions_user_grant_access', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('merch_items')
    op.drop_table('playlists')
    op.drop_table('podcasts')
    op.drop_table('pricing_plans')
    op.drop_table('users')
