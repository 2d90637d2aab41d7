"""initial products and orders

Revision ID: m001_initial
Revises:
Create Date: 2026-10-16 00:00:00.000000

Creates the two marketplace tables:
- products: catalog listings keyed by slug
- orders: one row per checkout, with email delivery bookkeeping
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'm001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: catalog listings
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('condition', sa.String(length=64), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=False),
        sa.Column('brand', sa.String(length=120), nullable=False),
        sa.Column('images', sa.JSON(), nullable=False),
        sa.Column('payee_email', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('checkout_link', sa.String(length=2048), nullable=False),
        sa.Column('rating', sa.Float(), nullable=False, server_default='0'),
        sa.Column('review_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reviews', sa.JSON(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('in_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_featured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('listed_by', sa.String(length=32), nullable=True),
        sa.Column('collections', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_slug', 'products', ['slug'], unique=True)
    op.create_index('ix_products_featured', 'products', ['is_featured'])
    op.create_index('ix_products_category', 'products', ['category'])

    # ============================================================================
    # orders: checkout records + email delivery state
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('product_slug', sa.String(length=255), nullable=False),
        sa.Column('product_title', sa.String(length=255), nullable=False),
        sa.Column('product_price_cents', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('shipping_address', sa.String(length=500), nullable=False),
        sa.Column('shipping_city', sa.String(length=120), nullable=False),
        sa.Column('shipping_state', sa.String(length=120), nullable=False),
        sa.Column('shipping_zip', sa.String(length=32), nullable=False),
        sa.Column('full_order_data', sa.JSON(), nullable=False),
        sa.Column('email_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_error', sa.Text(), nullable=True),
        sa.Column('email_retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_converted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_product_slug', 'orders', ['product_slug'])
    op.create_index('ix_orders_email_pending', 'orders', ['email_sent', 'email_retry_count'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])


def downgrade():
    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_email_pending', table_name='orders')
    op.drop_index('ix_orders_product_slug', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_products_category', table_name='products')
    op.drop_index('ix_products_featured', table_name='products')
    op.drop_index('ix_products_slug', table_name='products')
    op.drop_table('products')
