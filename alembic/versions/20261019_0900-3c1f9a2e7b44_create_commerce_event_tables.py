"""create_commerce_event_tables

Revision ID: 3c1f9a2e7b44
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f9a2e7b44'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 订单
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), nullable=False, comment='订单ID (UUID)'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('user_email', sa.String(length=255), nullable=False, server_default='', comment='下单时的邮箱'),
        sa.Column('user_name', sa.String(length=100), nullable=False, server_default='', comment='下单时的用户名'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='订单金额'),
        sa.Column('discount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='优惠金额'),
        sa.Column('coupon_code', sa.String(length=50), nullable=True, comment='优惠券'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Pending', comment='订单状态: Pending/Processing/Shipped/Delivered/Cancelled'),
        sa.Column('payment_id', sa.String(length=100), nullable=True, comment='支付ID'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付时间'),
        sa.Column('correlation_id', sa.String(length=64), nullable=True, comment='结账链路ID'),
        sa.Column('source_event_id', sa.String(length=64), nullable=True, comment='创建订单的事件ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_event_id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_correlation_id', 'orders', ['correlation_id'], unique=False)
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False, comment='订单ID'),
        sa.Column('product_id', sa.Integer(), nullable=False, comment='商品ID'),
        sa.Column('product_name', sa.String(length=200), nullable=False, server_default='', comment='商品名称快照'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='数量'),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False, comment='单价'),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=False, comment='小计'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    # 购物车
    op.create_table(
        'carts',
        sa.Column('id', sa.String(length=36), nullable=False, comment='购物车ID'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('coupon_code', sa.String(length=50), nullable=True),
        sa.Column('discount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cart_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'], unique=False)

    # 积分
    op.create_table(
        'reward_accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0', comment='积分余额'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_table(
        'reward_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='Earned/Redeemed'),
        sa.Column('points', sa.Integer(), nullable=False, comment='带符号积分变化'),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('order_id', sa.String(length=36), nullable=True, comment='关联订单'),
        sa.Column('source_event_id', sa.String(length=64), nullable=True, comment='触发的事件ID'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['reward_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reward_ledger_account_id', 'reward_ledger', ['account_id'], unique=False)
    op.create_index('ix_reward_ledger_order_id', 'reward_ledger', ['order_id'], unique=False)
    op.create_index('ix_reward_ledger_account_type', 'reward_ledger', ['account_id', 'type'], unique=False)
    op.create_table(
        'reward_tracked_orders',
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('order_id'),
    )
    op.create_index('ix_reward_tracked_orders_user_id', 'reward_tracked_orders', ['user_id'], unique=False)

    # 消息可靠性
    op.create_table(
        'outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('aggregate_type', sa.String(length=50), nullable=False, comment='聚合类型'),
        sa.Column('aggregate_id', sa.String(length=64), nullable=False, comment='聚合ID'),
        sa.Column('event_id', sa.String(length=64), nullable=False, comment='事件ID'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='事件类型'),
        sa.Column('correlation_id', sa.String(length=64), nullable=False, comment='链路ID'),
        sa.Column('body', sa.LargeBinary(), nullable=False, comment='序列化后的 envelope'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0', comment='发布失败次数'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('claimed_until', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index('ix_outbox_unpublished', 'outbox', ['published_at', 'id'], unique=False)
    op.create_index('ix_outbox_aggregate', 'outbox', ['aggregate_type', 'aggregate_id'], unique=False)

    op.create_table(
        'processed_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('consumer_name', sa.String(length=100), nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consumer_name', 'event_id', name='uq_processed_events_consumer_event'),
    )
    op.create_index('ix_processed_events_processed_at', 'processed_events', ['processed_at'], unique=False)

    op.create_table(
        'dead_letters',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=64), nullable=False),
        sa.Column('consumer_name', sa.String(length=100), nullable=False),
        sa.Column('topic', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        sa.Column('body', sa.LargeBinary(), nullable=False),
        sa.Column('headers', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_class', sa.String(length=200), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='dead', comment='dead/replayed/discarded'),
        sa.Column('dead_lettered_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('replayed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consumer_name', 'event_id', name='uq_dead_letters_consumer_event'),
    )
    op.create_index('ix_dead_letters_status', 'dead_letters', ['status'], unique=False)
    op.create_index('ix_dead_letters_correlation_id', 'dead_letters', ['correlation_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_dead_letters_correlation_id', table_name='dead_letters')
    op.drop_index('ix_dead_letters_status', table_name='dead_letters')
    op.drop_table('dead_letters')
    op.drop_index('ix_processed_events_processed_at', table_name='processed_events')
    op.drop_table('processed_events')
    op.drop_index('ix_outbox_aggregate', table_name='outbox')
    op.drop_index('ix_outbox_unpublished', table_name='outbox')
    op.drop_table('outbox')
    op.drop_index('ix_reward_tracked_orders_user_id', table_name='reward_tracked_orders')
    op.drop_table('reward_tracked_orders')
    op.drop_index('ix_reward_ledger_account_type', table_name='reward_ledger')
    op.drop_index('ix_reward_ledger_order_id', table_name='reward_ledger')
    op.drop_index('ix_reward_ledger_account_id', table_name='reward_ledger')
    op.drop_table('reward_ledger')
    op.drop_table('reward_accounts')
    op.drop_index('ix_cart_items_cart_id', table_name='cart_items')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_correlation_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
