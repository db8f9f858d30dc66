"""create order sync tables

Revision ID: create_order_sync_tables
Revises:
Create Date: 2025-10-15 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'create_order_sync_tables'
down_revision = None
branch_labels = None
depends_on = None


BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        'marketplace_credentials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('principal_id', sa.String(100), nullable=False, unique=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_user_id', sa.String(100), nullable=True),
        sa.Column('scopes', JSON_PAYLOAD, nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_marketplace_credentials_expires_at', 'marketplace_credentials', ['access_token_expires_at'])

    op.create_table(
        'inventory_items',
        sa.Column('id', BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('sku', sa.String(100), nullable=False, unique=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('principal_id', sa.String(100), nullable=True),
        sa.Column('rec_created', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rec_updated', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_inventory_items_principal_id', 'inventory_items', ['principal_id'])

    op.create_table(
        'raw_payloads',
        sa.Column('id', BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('source', sa.String(100), nullable=False),
        sa.Column('principal_id', sa.String(100), nullable=True),
        sa.Column('payload', JSON_PAYLOAD, nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_raw_payloads_source', 'raw_payloads', ['source'])
    op.create_index('idx_raw_payloads_received_at', 'raw_payloads', ['received_at'])

    op.create_table(
        'orders',
        sa.Column('id', BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('ebay_order_id', sa.String(100), nullable=False, unique=True),
        sa.Column('principal_id', sa.String(100), nullable=False),
        sa.Column('order_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('buyer_username', sa.String(100), nullable=True),
        sa.Column('total_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('shipping_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(10), nullable=True),
        sa.Column('payment_status', sa.String(50), nullable=True),
        sa.Column('fulfillment_status', sa.String(50), nullable=True),
        sa.Column('raw_payload_id', BIGINT_PK, sa.ForeignKey('raw_payloads.id'), nullable=True),
        sa.Column('rec_created', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rec_updated', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_orders_principal_id', 'orders', ['principal_id'])
    op.create_index('idx_orders_order_created_at', 'orders', ['order_created_at'])

    op.create_table(
        'order_lines',
        sa.Column('id', BIGINT_PK, primary_key=True, autoincrement=True),
        sa.Column('order_id', BIGINT_PK, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ebay_line_id', sa.String(100), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('ebay_item_id', sa.String(100), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('item_price_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('inventory_item_id', BIGINT_PK, sa.ForeignKey('inventory_items.id'), nullable=True),
        sa.Column('rec_created', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rec_updated', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('order_id', 'ebay_line_id', name='uq_order_lines_order_id_ebay_line_id'),
    )
    op.create_index('idx_order_lines_sku', 'order_lines', ['sku'])
    op.create_index('idx_order_lines_inventory_item_id', 'order_lines', ['inventory_item_id'])

    op.create_table(
        'sync_runs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('principal_id', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('window_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('window_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('summary_json', JSON_PAYLOAD, nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('idx_sync_runs_principal_status', 'sync_runs', ['principal_id', 'status'])
    op.create_index('idx_sync_runs_started_at', 'sync_runs', ['started_at'])


def downgrade():
    op.drop_table('sync_runs')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('raw_payloads')
    op.drop_table('inventory_items')
    op.drop_table('marketplace_credentials')
