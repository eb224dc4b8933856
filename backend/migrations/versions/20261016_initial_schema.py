"""Initial schema: inventory ledger, products, Square mappings, webhook logs, config

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16

This migration creates:
1. inventory_items + stock_movements (append-only ledger)
2. products + product_ingredients (recipes)
3. product_square_mappings (unique per product/variation pair)
4. square_webhook_logs (unique dedup_key makes the log insert the dedup check)
5. square_config (singleton row keyed by 'config:square')
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261016_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. INVENTORY
    # ==========================================================================
    op.create_table('inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('vendor_product_id', sa.String(length=64), nullable=True),
        sa.Column('physical_unit', sa.String(length=32), nullable=False),
        sa.Column('current_physical_stock', sa.Float(), nullable=False),
        sa.Column('min_physical_stock_level', sa.Float(), nullable=False),
        sa.Column('max_physical_stock_level', sa.Float(), nullable=True),
        sa.Column('recipe_unit', sa.String(length=32), nullable=False),
        sa.Column('units_per_physical_item', sa.Float(), nullable=False),
        sa.Column('cost_per_physical_unit', sa.Float(), nullable=False),
        sa.Column('cost_per_recipe_unit', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_restocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('current_physical_stock >= 0', name='ck_inventory_items_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_inventory_items_status'), ['status'], unique=False)
        batch_op.create_index('ix_inventory_items_status_name', ['status', 'name'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('previous_stock', sa.Float(), nullable=False),
        sa.Column('new_stock', sa.Float(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('actor_type', sa.String(length=16), nullable=False),
        sa.Column('actor_id', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_inventory_item_id'), ['inventory_item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_actor_type'), ['actor_type'], unique=False)
        batch_op.create_index('ix_stock_movements_item_created', ['inventory_item_id', 'created_at'], unique=False)

    # ==========================================================================
    # 2. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=True),
        sa.Column('square_item_id', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('variation', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=True),
        sa.Column('size', sa.String(length=16), nullable=True),
        sa.Column('temperature', sa.String(length=16), nullable=True),
        sa.Column('to_go_status', sa.String(length=16), nullable=True),
        sa.Column('preparation_time_minutes', sa.Integer(), nullable=True),
        sa.Column('preparation_instructions', sa.Text(), nullable=True),
        sa.Column('allergens', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token', name='uq_products_token'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_status'), ['status'], unique=False)
        batch_op.create_index('ix_products_status_name', ['status', 'name'], unique=False)

    op.create_table('product_ingredients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_id', sa.Integer(), nullable=False),
        sa.Column('inventory_item_name', sa.String(length=255), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['inventory_item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_ingredients', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_product_ingredients_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_product_ingredients_inventory_item_id'), ['inventory_item_id'], unique=False)
        batch_op.create_index('ix_product_ingredients_product_position', ['product_id', 'position'], unique=False)

    # ==========================================================================
    # 3. SQUARE MAPPINGS
    # ==========================================================================
    op.create_table('product_square_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('square_catalog_object_id', sa.String(length=64), nullable=False),
        sa.Column('square_variation_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('square_item_name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'square_variation_id', name='uq_mappings_product_variation'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('product_square_mappings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_product_square_mappings_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_product_square_mappings_status'), ['status'], unique=False)
        batch_op.create_index('ix_mappings_variation_status', ['square_variation_id', 'status'], unique=False)

    # ==========================================================================
    # 4. WEBHOOK LOGS
    # ==========================================================================
    op.create_table('square_webhook_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=160), nullable=False),
        sa.Column('dedup_key', sa.String(length=160), nullable=True),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('merchant_id', sa.String(length=64), nullable=True),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sync_result', sa.JSON(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('replay_of_id', sa.Integer(), nullable=True),
        sa.Column('actor_type', sa.String(length=16), nullable=False),
        sa.Column('actor_id', sa.String(length=128), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['replay_of_id'], ['square_webhook_logs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dedup_key', name='uq_webhook_logs_dedup_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('square_webhook_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_square_webhook_logs_event_id'), ['event_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_square_webhook_logs_outcome'), ['outcome'], unique=False)
        batch_op.create_index(batch_op.f('ix_square_webhook_logs_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_square_webhook_logs_received_at'), ['received_at'], unique=False)

    # ==========================================================================
    # 5. SQUARE CONFIG
    # ==========================================================================
    op.create_table('square_config',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('application_id', sa.String(length=128), nullable=True),
        sa.Column('access_token', sa.String(length=255), nullable=True),
        sa.Column('location_id', sa.String(length=64), nullable=True),
        sa.Column('webhook_signature_key', sa.String(length=255), nullable=True),
        sa.Column('signature_key_ever_set', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('webhook_subscription_id', sa.String(length=64), nullable=True),
        sa.Column('webhook_notification_url', sa.String(length=512), nullable=True),
        sa.Column('environment', sa.String(length=16), nullable=False),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('sync_frequency', sa.String(length=16), nullable=False),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_square_config_key'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('square_config')
    with op.batch_alter_table('square_webhook_logs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_square_webhook_logs_received_at'))
        batch_op.drop_index(batch_op.f('ix_square_webhook_logs_order_id'))
        batch_op.drop_index(batch_op.f('ix_square_webhook_logs_outcome'))
        batch_op.drop_index(batch_op.f('ix_square_webhook_logs_event_id'))
    op.drop_table('square_webhook_logs')
    op.drop_table('product_square_mappings')
    op.drop_table('product_ingredients')
    op.drop_table('products')
    op.drop_table('stock_movements')
    op.drop_table('inventory_items')
