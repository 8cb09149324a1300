"""Couriers, orders and order proofs

Revision ID: 2025_11_03_0001
Revises:
Create Date: 2025-11-03 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '2025_11_03_0001'
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=True)
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default='0')


def upgrade() -> None:
    op.create_table(
        'couriers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('tg_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_couriers'),
        sa.UniqueConstraint('tg_user_id', name='uq_couriers__tg_user_id'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('shopify_order_id', sa.String(length=64), nullable=True),
        sa.Column('customer_name', sa.String(length=160), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('mobile_number', sa.String(length=32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('internal_comment', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='assigned'),
        _money('total_order_fees'),
        _money('delivery_fee'),
        _money('partial_paid_amount'),
        _money('admin_delivery_fee'),
        _money('extra_fee'),
        sa.Column('payment_method', sa.String(length=64), nullable=True),
        sa.Column('payment_status', sa.String(length=32), nullable=True),
        sa.Column('financial_status', sa.String(length=32), nullable=True),
        sa.Column('payment_sub_type', sa.String(length=64), nullable=True),
        sa.Column('collected_by', sa.String(length=64), nullable=True),
        sa.Column('onther_payments', JSONB(), nullable=True),
        _money('hold_fee', nullable=True),
        sa.Column('hold_fee_comment', sa.Text(), nullable=True),
        sa.Column('hold_fee_created_by', sa.String(length=160), nullable=True),
        sa.Column('hold_fee_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hold_fee_added_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hold_fee_removed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_courier_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('shopify_order_id', name='uq_orders__shopify_order_id'),
        sa.ForeignKeyConstraint(
            ['assigned_courier_id'],
            ['couriers.id'],
            name='fk_orders__assigned_courier_id__couriers',
            ondelete='SET NULL',
        ),
    )
    op.create_index('ix_orders__order_number', 'orders', ['order_number'])
    op.create_index('ix_orders__status', 'orders', ['status'])
    op.create_index('ix_orders__assigned_courier_id', 'orders', ['assigned_courier_id'])
    op.create_index('ix_orders__courier_created', 'orders', ['assigned_courier_id', 'created_at'])
    op.create_index('ix_orders__hold_removed_added', 'orders', ['hold_fee_removed_at', 'hold_fee_added_at'])

    op.create_table(
        'order_proofs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('image_url', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_order_proofs'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_order_proofs__order_id__orders',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_order_proofs__order_id', 'order_proofs', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_order_proofs__order_id', table_name='order_proofs')
    op.drop_table('order_proofs')

    op.drop_index('ix_orders__hold_removed_added', table_name='orders')
    op.drop_index('ix_orders__courier_created', table_name='orders')
    op.drop_index('ix_orders__assigned_courier_id', table_name='orders')
    op.drop_index('ix_orders__status', table_name='orders')
    op.drop_index('ix_orders__order_number', table_name='orders')
    op.drop_table('orders')

    op.drop_table('couriers')
