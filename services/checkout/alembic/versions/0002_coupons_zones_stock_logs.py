from alembic import op
import sqlalchemy as sa

revision = '0002_coupons_zones_stock_logs'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('value', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('usage_limit', sa.Integer, nullable=True),
        sa.Column('usage_count', sa.Integer, nullable=False, server_default='0')
    )
    op.create_table(
        'shipping_zones',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('charge', sa.Numeric(10, 2), nullable=False)
    )
    op.create_table(
        'site_settings',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0')
    )
    op.create_table(
        'stock_logs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('old_stock', sa.Integer, nullable=False),
        sa.Column('new_stock', sa.Integer, nullable=False),
        sa.Column('change', sa.Integer, nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, index=True)
    )
    op.add_column('orders', sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'))
    op.add_column('orders', sa.Column('tax_amount', sa.Numeric(10, 2), nullable=False, server_default='0'))
    op.add_column('orders', sa.Column('coupon_id', sa.Integer, nullable=True))
    op.create_foreign_key(
        'fk_orders_coupon_id_coupons',
        source_table='orders',
        referent_table='coupons',
        local_cols=['coupon_id'],
        remote_cols=['id']
    )

def downgrade():
    op.drop_constraint('fk_orders_coupon_id_coupons', 'orders', type_='foreignkey')
    op.drop_column('orders', 'coupon_id')
    op.drop_column('orders', 'tax_amount')
    op.drop_column('orders', 'discount_amount')
    op.drop_table('stock_logs')
    op.drop_table('site_settings')
    op.drop_table('shipping_zones')
    op.drop_table('coupons')
