"""Create shipping engine schema

Revision ID: 001_shipping_engine
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_shipping_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create order, booking, estimate cache, settlement and wallet tables"""

    # ====================
    # ORDERS TABLE
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('order_number', sa.String(30), nullable=False),
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('vendor_email', sa.String(255), nullable=True),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING'),
        sa.Column('payment_mode', sa.String(20), nullable=False, server_default='PREPAID'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('pickup_address', sa.JSON(), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('line_items', sa.JSON(), nullable=False),
        sa.Column('package', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_vendor_id', 'orders', ['vendor_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    # ====================
    # ORDER META / NOTES
    # ====================
    op.create_table(
        'order_meta',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('meta_key', sa.String(100), nullable=False),
        sa.Column('meta_value', sa.String(1000), nullable=True),
        sa.UniqueConstraint('order_id', 'meta_key', name='uq_order_meta_key'),
    )

    op.create_index('ix_order_meta_order_id', 'order_meta', ['order_id'])
    op.create_index('ix_order_meta_key_value', 'order_meta', ['meta_key', 'meta_value'])

    op.create_table(
        'order_notes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=True),
        sa.Column('note', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index('ix_order_notes_order_id', 'order_notes', ['order_id'])

    # ====================
    # BOOKING RECORDS TABLE
    # ====================
    op.create_table(
        'booking_records',
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='RESTRICT'), primary_key=True),
        sa.Column('carrier', sa.String(30), nullable=False, comment='Carrier platform tag e.g. shiprocket, bigship'),
        sa.Column('carrier_shipment_id', sa.String(100), nullable=False),
        sa.Column('awb_code', sa.String(100), nullable=False, comment='Air Waybill number from carrier'),
        sa.Column('courier_name', sa.String(100), nullable=True),
        sa.Column('courier_id', sa.String(50), nullable=True),
        sa.Column('label_url', sa.String(1000), nullable=False),
        sa.Column('booked_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index('ix_booking_records_carrier', 'booking_records', ['carrier'])
    op.create_index('ix_booking_records_awb_code', 'booking_records', ['awb_code'])

    # ====================
    # RATE ESTIMATE CACHE TABLE
    # ====================
    op.create_table(
        'rate_estimate_cache',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('vendor_id', sa.String(64), nullable=False),
        sa.Column('origin_pincode', sa.String(10), nullable=False),
        sa.Column('slab_key', sa.String(64), nullable=False, comment='md5 of vendor, origin and slab formatted to 2 decimals'),
        sa.Column('min_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('zone_data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('vendor_id', 'origin_pincode', 'slab_key', name='uq_rate_estimate_cache_natural_key'),
    )

    op.create_index('ix_rate_estimate_cache_vendor_id', 'rate_estimate_cache', ['vendor_id'])
    op.create_index('ix_rate_estimate_cache_created_at', 'rate_estimate_cache', ['created_at'])

    # ====================
    # RTO SETTLEMENTS TABLE
    # ====================
    op.create_table(
        'rto_settlements',
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='RESTRICT'), primary_key=True),
        sa.Column('vendor_id', sa.String(64), nullable=True),
        sa.Column('vendor_refund_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('vendor_transaction_id', sa.String(64), nullable=True),
        sa.Column('vendor_refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('buyer_penalty_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('buyer_refund_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('buyer_transaction_id', sa.String(64), nullable=True),
        sa.Column('buyer_refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
    )

    # ====================
    # WALLET TRANSACTIONS TABLE
    # ====================
    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('transaction_type', sa.String(10), nullable=False, comment='CREDIT or DEBIT'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('memo', sa.String(500), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('category', sa.String(30), nullable=False, server_default='shipping'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index('ix_wallet_transactions_order_id', 'wallet_transactions', ['order_id'])
    op.create_index('ix_wallet_transactions_user_created', 'wallet_transactions', ['user_id', 'created_at'])


def downgrade():
    """Drop shipping engine tables"""
    op.drop_table('wallet_transactions')
    op.drop_table('rto_settlements')
    op.drop_table('rate_estimate_cache')
    op.drop_table('booking_records')
    op.drop_table('order_notes')
    op.drop_table('order_meta')
    op.drop_table('orders')
