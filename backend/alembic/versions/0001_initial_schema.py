"""
Initial schema for channel sync and the purchase ledger

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18

This migration:
1. Creates master data tables (products, companies)
2. Creates channels and channel_product_mappings
3. Creates the append-only inventory_transactions ledger
4. Creates agent_actions
5. Creates purchase invoices, items and payments
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    ]


def upgrade():
    # =========================================================================
    # 1. Master data
    # =========================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(100), unique=True),
        sa.Column('unit', sa.String(20), server_default='pcs'),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), server_default='0'),
        sa.Column('purchase_price', sa.Numeric(12, 2)),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('idx_product_active', 'products', ['is_active'])

    op.create_table(
        'companies',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )

    # =========================================================================
    # 2. Channels
    # =========================================================================
    op.create_table(
        'channels',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('channel_type', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('store_url', sa.Text()),
        sa.Column('default_pickup_location', sa.String(255)),
        sa.Column('credentials', postgresql.JSONB(), nullable=False, server_default='{}'),
        *_timestamps(),
    )
    op.create_index('idx_channel_user', 'channels', ['user_id'])
    op.create_index('idx_channel_type_status', 'channels', ['channel_type', 'status'])

    op.create_table(
        'channel_product_mappings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('channel_id', sa.String(36), sa.ForeignKey('channels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_product_id', sa.String(255), nullable=False),
        sa.Column('label', sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint('channel_id', 'external_product_id', name='uq_channel_external_product'),
    )
    op.create_index('idx_mapping_product', 'channel_product_mappings', ['product_id'])

    # =========================================================================
    # 3. Inventory ledger
    # =========================================================================
    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('reference_type', sa.String(50)),
        sa.Column('reference_id', sa.String(255)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', sa.String(36)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    # Idempotency key. NULL reference ids (manual adjustments) never collide.
    op.create_index(
        'uq_inventory_txn_reference',
        'inventory_transactions',
        ['product_id', 'reference_type', 'reference_id'],
        unique=True,
    )
    op.create_index('idx_inventory_txn_product_created', 'inventory_transactions', ['product_id', 'created_at'])

    # =========================================================================
    # 4. Agent actions
    # =========================================================================
    op.create_table(
        'agent_actions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('agent_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending_approval'),
        sa.Column('plan', postgresql.JSONB(), nullable=False),
        sa.Column('rationale', sa.Text()),
        sa.Column('resolved_by', sa.String(36)),
        sa.Column('resolved_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('idx_agent_action_status', 'agent_actions', ['status', 'created_at'])

    # =========================================================================
    # 5. Purchase invoices & payments
    # =========================================================================
    op.create_table(
        'purchase_invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_number', sa.String(100), nullable=False),
        sa.Column('company_id', sa.String(36), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date()),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', sa.String(36)),
        *_timestamps(),
        sa.UniqueConstraint('company_id', 'invoice_number', name='uq_invoice_company_number'),
        sa.CheckConstraint('amount_paid <= total_amount', name='ck_invoice_paid_within_total'),
    )
    op.create_index('idx_invoice_status', 'purchase_invoices', ['status'])

    op.create_table(
        'purchase_invoice_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('purchase_invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='SET NULL')),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )

    # Payments block invoice deletion (RESTRICT); cancel the invoice instead
    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('purchase_invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_mode', sa.String(20), nullable=False),
        sa.Column('reference', sa.String(255)),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', sa.String(36)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
    )
    op.create_index('idx_payment_invoice', 'payments', ['invoice_id'])


def downgrade():
    op.drop_table('payments')
    op.drop_table('purchase_invoice_items')
    op.drop_table('purchase_invoices')
    op.drop_table('agent_actions')
    op.drop_table('inventory_transactions')
    op.drop_table('channel_product_mappings')
    op.drop_table('channels')
    op.drop_table('companies')
    op.drop_table('products')
