"""Initial reconciliation schema: catalog, daily feeds, warehouse ledger, purchasing

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. products, branches, tolerance_settings (catalog + tolerance configuration)
2. stock_snapshots, sales_records, production_consumptions, production_conversions (daily feeds)
3. warehouse_entries, warehouse_ledger_events (warehouse ledger + audit trail)
4. purchase_orders, receiving_lines (posting input)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('sub_category', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_sub_category', ['sub_category'], unique=False)

    op.create_table('branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('branches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_branches_code'), ['code'], unique=True)

    op.create_table('tolerance_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('tolerance_percentage', sa.Numeric(precision=6, scale=2), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'branch_id', name='uq_tolerance_product_branch'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('tolerance_settings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_tolerance_settings_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tolerance_settings_branch_id'), ['branch_id'], unique=False)

    # ==========================================================================
    # 2. DAILY FEEDS
    # ==========================================================================
    op.create_table('stock_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('on_hand_qty', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('waste_qty', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'branch_id', 'snapshot_date', name='uq_snapshot_product_branch_date'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_snapshots', schema=None) as batch_op:
        batch_op.create_index('ix_snapshot_date_branch', ['snapshot_date', 'branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_snapshots_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_snapshots_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_snapshots_snapshot_date'), ['snapshot_date'], unique=False)

    op.create_table('sales_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sales_date', sa.Date(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_name', sa.String(length=120), nullable=False),
        sa.Column('qty_sold', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales_records', schema=None) as batch_op:
        batch_op.create_index('ix_sales_date_product', ['sales_date', 'product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_records_sales_date'), ['sales_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_records_product_id'), ['product_id'], unique=False)

    op.create_table('production_consumptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('consumed_on', sa.Date(), nullable=False),
        sa.Column('branch_name', sa.String(length=120), nullable=False),
        sa.Column('qty_used', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('production_consumptions', schema=None) as batch_op:
        batch_op.create_index('ix_prodcons_product_date', ['product_id', 'consumed_on'], unique=False)
        batch_op.create_index(batch_op.f('ix_production_consumptions_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_production_consumptions_consumed_on'), ['consumed_on'], unique=False)

    op.create_table('production_conversions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('production_date', sa.Date(), nullable=False),
        sa.Column('total_konversi', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('production_conversions', schema=None) as batch_op:
        batch_op.create_index('ix_prodconv_product_date', ['product_id', 'production_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_production_conversions_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_production_conversions_production_date'), ['production_date'], unique=False)

    # ==========================================================================
    # 3. WAREHOUSE LEDGER
    # ==========================================================================
    op.create_table('warehouse_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_code', sa.String(length=32), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('qty_in', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('qty_out', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('running_balance', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_reference', sa.String(length=128), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('warehouse_entries', schema=None) as batch_op:
        batch_op.create_index('ix_whentry_product_branch_date', ['product_id', 'branch_code', 'entry_date'], unique=False)
        batch_op.create_index('ix_whentry_source', ['source_type', 'source_reference'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_entries_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_entries_branch_code'), ['branch_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_entries_entry_date'), ['entry_date'], unique=False)

    op.create_table('warehouse_ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('branch_code', sa.String(length=32), nullable=True),
        sa.Column('receiving_line_id', sa.Integer(), nullable=True),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('warehouse_ledger_events', schema=None) as batch_op:
        batch_op.create_index('ix_whevent_type_created', ['event_type', 'created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_ledger_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_ledger_events_entity_id'), ['entity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_ledger_events_receiving_line_id'), ['receiving_line_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_warehouse_ledger_events_purchase_order_id'), ['purchase_order_id'], unique=False)

    # ==========================================================================
    # 4. PURCHASING
    # ==========================================================================
    op.create_table('purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('po_number', sa.String(length=64), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('status_changed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('purchase_orders', schema=None) as batch_op:
        batch_op.create_index('ix_po_status', ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_purchase_orders_po_number'), ['po_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_purchase_orders_branch_id'), ['branch_id'], unique=False)

    op.create_table('receiving_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('received_on', sa.Date(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=True),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_reference', sa.String(length=128), nullable=True),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('invoice_number', sa.String(length=128), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('receiving_lines', schema=None) as batch_op:
        batch_op.create_index('ix_rcvline_source', ['source_type', 'source_reference'], unique=False)
        batch_op.create_index(batch_op.f('ix_receiving_lines_received_on'), ['received_on'], unique=False)
        batch_op.create_index(batch_op.f('ix_receiving_lines_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_receiving_lines_branch_id'), ['branch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_receiving_lines_purchase_order_id'), ['purchase_order_id'], unique=False)


def downgrade():
    op.drop_table('receiving_lines')
    op.drop_table('purchase_orders')
    op.drop_table('warehouse_ledger_events')
    op.drop_table('warehouse_entries')
    op.drop_table('production_conversions')
    op.drop_table('production_consumptions')
    op.drop_table('sales_records')
    op.drop_table('stock_snapshots')
    op.drop_table('tolerance_settings')
    op.drop_table('branches')
    op.drop_table('products')
