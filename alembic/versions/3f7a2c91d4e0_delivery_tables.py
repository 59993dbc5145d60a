"""delivery tables: заказы, позиции, точки доставки, позиция курьера.

Revision ID: 3f7a2c91d4e0
Revises:
Create Date: 2026-10-12 14:05:37.104822

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f7a2c91d4e0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'pending', 'processing', 'delivering', 'delivered', 'cancelled',
    'to be quoted', 'quoted', 'approved', 'gathering', 'to be delivered', 'to deliver',
)


def _order_columns() -> list:
    status_enum = sa.Enum(*ORDER_STATUSES, name='order_status_enum', create_type=False)
    return [
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, index=True),
        sa.Column('school_id', sa.Integer(), sa.ForeignKey('schools.id'), nullable=True, index=True),
        sa.Column('status', status_enum, nullable=False, index=True),
        sa.Column('delivery_location', sa.Text(), nullable=True),
        sa.Column('driver_latitude', sa.Float(), nullable=True),
        sa.Column('driver_longitude', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    sa.Enum(*ORDER_STATUSES, name='order_status_enum').create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True, index=True),
        comment='Клиенты',
    )
    op.create_table(
        'schools',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        comment='Школы, основные точки доставки',
    )
    op.create_table('orders', *_order_columns(), comment='Обычные заказы')
    op.create_table('custom_orders', *_order_columns(), comment='Индивидуальные заказы (через расчёт стоимости)')
    op.create_table(
        'order_details',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False, index=True),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
    )
    op.create_table(
        'custom_order_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('custom_order_id', sa.Integer(), sa.ForeignKey('custom_orders.id'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('gathered', sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_table('custom_order_items')
    op.drop_table('order_details')
    op.drop_table('custom_orders')
    op.drop_table('orders')
    op.drop_table('schools')
    op.drop_table('users')
    sa.Enum(name='order_status_enum').drop(op.get_bind(), checkfirst=True)
