"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.order.entity import Order, OrderItem, OrderStatus
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel


logger = get_logger(__name__)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            user_id=model.user_id,
            total_amount=Decimal(str(model.total_amount)),
            items=[
                OrderItem(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    quantity=i.quantity,
                    price=Decimal(str(i.price)),
                    total=Decimal(str(i.total)),
                )
                for i in model.items
            ],
            user_email=model.user_email,
            user_name=model.user_name,
            coupon_code=model.coupon_code,
            discount=Decimal(str(model.discount)),
            status=OrderStatus(model.status),
            payment_id=model.payment_id,
            paid_at=model.paid_at,
            correlation_id=model.correlation_id,
            source_event_id=model.source_event_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, order: Order) -> Order:
        """创建订单（含订单行）"""
        now = datetime.now(timezone.utc)
        db_order = OrderModel(
            id=order.id,
            user_id=order.user_id,
            user_email=order.user_email,
            user_name=order.user_name,
            total_amount=order.total_amount,
            discount=order.discount,
            coupon_code=order.coupon_code,
            status=order.status.value,
            payment_id=order.payment_id,
            paid_at=order.paid_at,
            correlation_id=order.correlation_id,
            source_event_id=order.source_event_id,
            created_at=order.created_at or now,
            updated_at=order.updated_at or now,
            items=[
                OrderItemModel(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    quantity=i.quantity,
                    price=i.price,
                    total=i.total,
                )
                for i in order.items
            ],
        )
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info("order_created", order_id=db_order.id, user_id=db_order.user_id)
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str, *, for_update: bool = False) -> Optional[Order]:
        """根据ID获取订单"""
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def list_by_user(self, user_id: str) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.user_id == user_id)
            .order_by(OrderModel.created_at.desc(), OrderModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, order: Order) -> Order:
        """更新状态/支付信息"""
        db_order = await self.session.get(OrderModel, order.id)
        if db_order is None:
            raise ValueError(f"Order {order.id} does not exist")
        db_order.status = order.status.value
        db_order.payment_id = order.payment_id
        db_order.paid_at = order.paid_at
        db_order.updated_at = order.updated_at or datetime.now(timezone.utc)
        await self.session.flush()
        await self.session.refresh(db_order)
        return self._to_entity(db_order)
