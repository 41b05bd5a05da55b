"""Initial schema: host subscriptions, catalog mirror, advertising slots, listings.

For fresh installations:
    1. Configure your DATABASE_URL in .env
    2. Run: alembic upgrade head
    3. Run: python scripts/sync_stripe_catalog.py

Revision ID: 0001_initial
Revises:
Create Date: 2026-01-05 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'host_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('host_id', sa.String(64), nullable=False),
        sa.Column('plan_id', sa.String(255), nullable=False),
        sa.Column('price_id', sa.String(255), nullable=True),
        sa.Column('total_tokens', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('trial_start', sa.DateTime(), nullable=True),
        sa.Column('trial_end', sa.DateTime(), nullable=True),
        sa.Column('current_period_start', sa.DateTime(), nullable=True),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False),
        sa.Column('token_claims', sa.Integer(), server_default='0', nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_host_subscriptions_host_id', 'host_subscriptions', ['host_id'], unique=True)
    op.create_index('ix_host_subscriptions_status', 'host_subscriptions', ['status'])
    op.create_index(
        'ix_host_subscriptions_stripe_customer_id', 'host_subscriptions', ['stripe_customer_id'], unique=True
    )
    op.create_index(
        'ix_host_subscriptions_stripe_subscription_id', 'host_subscriptions', ['stripe_subscription_id'], unique=True
    )

    op.create_table(
        'catalog_products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_product_id', sa.String(255), nullable=False),
        sa.Column('plan_id', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('ad_slots', sa.Integer(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('features', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('synced_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_catalog_products_stripe_product_id', 'catalog_products', ['stripe_product_id'], unique=True)
    op.create_index('ix_catalog_products_plan_id', 'catalog_products', ['plan_id'])

    op.create_table(
        'catalog_prices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stripe_price_id', sa.String(255), nullable=False),
        sa.Column('stripe_product_id', sa.String(255), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('billing_period', sa.String(20), nullable=False),
        sa.Column('interval', sa.String(10), nullable=False),
        sa.Column('interval_count', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('synced_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_catalog_prices_stripe_price_id', 'catalog_prices', ['stripe_price_id'], unique=True)
    op.create_index('ix_catalog_prices_stripe_product_id', 'catalog_prices', ['stripe_product_id'])

    op.create_table(
        'advertising_slots',
        sa.Column('slot_id', sa.String(64), primary_key=True),
        sa.Column('host_id', sa.String(64), nullable=False),
        sa.Column('listing_id', sa.String(64), nullable=True),
        sa.Column('ad_model', sa.String(20), nullable=False),
        sa.Column('plan_id_at_creation', sa.String(255), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('review_compensation_days', sa.Integer(), nullable=False),
        sa.Column('do_not_renew', sa.Boolean(), nullable=False),
        sa.Column('is_past_due', sa.Boolean(), nullable=False),
        sa.Column('marked_for_immediate_expiry', sa.Boolean(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_advertising_slots_host_id', 'advertising_slots', ['host_id'])
    # 唯一约束保证一个房源最多挂一个广告位 (NULL 不参与比较)
    op.create_index('ix_advertising_slots_listing_id', 'advertising_slots', ['listing_id'], unique=True)
    op.create_index('ix_advertising_slots_ad_model', 'advertising_slots', ['ad_model'])
    op.create_index('ix_advertising_slots_expires_at', 'advertising_slots', ['expires_at'])

    op.create_table(
        'listings',
        sa.Column('listing_id', sa.String(64), primary_key=True),
        sa.Column('host_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('first_review_decision_at', sa.DateTime(), nullable=True),
        sa.Column('active_slot_id', sa.String(64), nullable=True),
        sa.Column('slot_expires_at', sa.DateTime(), nullable=True),
        sa.Column('slot_do_not_renew', sa.Boolean(), nullable=True),
        sa.Column('slot_past_due', sa.Boolean(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_listings_host_id', 'listings', ['host_id'])


def downgrade() -> None:
    op.drop_table('listings')
    op.drop_table('advertising_slots')
    op.drop_table('catalog_prices')
    op.drop_table('catalog_products')
    op.drop_table('host_subscriptions')
