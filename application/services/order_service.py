"""
订单应用服务：支付确认（PaymentCompletion）、状态变更与订单查询
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from application.dto import OrderDTO, OrderItemDTO
from application.events.contracts import PaymentCompleted
from application.events.envelope import new_envelope
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.exceptions import OrderNotFoundException
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.order.entity import Order, OrderStatus


logger = get_logger(__name__)


def to_order_dto(order: Order) -> OrderDTO:
    return OrderDTO(
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
        items=[
            OrderItemDTO(
                product_id=i.product_id,
                product_name=i.product_name,
                quantity=i.quantity,
                price=i.price,
                total=i.total,
            )
            for i in order.items
        ],
        created_at=order.created_at,
    )


class OrderService:
    def __init__(self, uow_factory: UnitOfWorkFactory, outbox: OutboxWriter) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox

    async def confirm_payment(
        self,
        order_id: str,
        payment_id: str,
        *,
        amount: Optional[Decimal] = None,
        is_successful: bool = True,
        paid_at: Optional[datetime] = None,
    ) -> OrderDTO:
        """外部支付确认入口。

        成功时订单进入 Processing 并登记 payment_id；失败时订单保持 Pending。
        两种情况都发出 PaymentCompleted，沿用订单的 correlation_id。
        同一 payment_id 的重复确认直接返回当前订单，不再发事件。
        """
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundException(order_id)

            if is_successful and order.payment_id == payment_id and order.status != OrderStatus.PENDING:
                logger.info("payment_already_recorded", order_id=order_id, payment_id=payment_id)
                return to_order_dto(order)

            if is_successful:
                order.record_payment(payment_id, paid_at)
                order = await uow.orders.update(order)

            envelope = new_envelope(
                PaymentCompleted(
                    order_id=order.id,
                    payment_id=payment_id,
                    user_id=order.user_id,
                    amount=amount if amount is not None else order.total_amount,
                    is_successful=is_successful,
                ),
                correlation_id=order.correlation_id,
            )
            await self._outbox.enqueue(uow, envelope, aggregate_type="Order", aggregate_id=order.id)

        logger.info(
            "payment_completed",
            order_id=order.id,
            payment_id=payment_id,
            is_successful=is_successful,
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id,
        )
        return to_order_dto(order)

    async def get_order(self, order_id: str) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return to_order_dto(order)

    async def list_orders(self, user_id: str) -> List[OrderDTO]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_by_user(user_id)
        return [to_order_dto(o) for o in orders]

    async def update_status(self, order_id: str, status: OrderStatus) -> OrderDTO:
        """人工/履约侧推进订单状态（Shipped、Delivered、Cancelled 等），已取消的订单不可再变更"""
        async with self._uow_factory() as uow:
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundException(order_id)
            previous = order.status
            order.change_status(status)
            order = await uow.orders.update(order)

        logger.info(
            "order_status_changed",
            order_id=order.id,
            previous=previous.value,
            status=order.status.value,
            correlation_id=order.correlation_id,
        )
        return to_order_dto(order)
