"""
OrderPlacement：CartCheckedOut -> 创建 Pending 订单 -> OrderPlaced
"""
from __future__ import annotations

import uuid
from decimal import Decimal

from application.consumers.base import IdempotentConsumer
from application.events.contracts import CartCheckedOut, LineItem, OrderPlaced
from application.events.envelope import EventEnvelope
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderItem


logger = get_logger(__name__)


class OrderPlacementConsumer(IdempotentConsumer):
    name = "order-placement"
    event_types = (CartCheckedOut.event_type,)

    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        cart: CartCheckedOut = envelope.payload  # type: ignore[assignment]
        items = [
            OrderItem(
                product_id=i.product_id,
                product_name=i.product_name,
                quantity=i.quantity,
                price=i.price,
                total=i.total,
            )
            for i in cart.items
        ]
        items_total = sum((i.total for i in items), Decimal("0"))
        order = Order(
            id=str(uuid.uuid4()),
            user_id=cart.user_id,
            total_amount=cart.total_amount,
            items=items,
            user_email=cart.user_email,
            user_name=cart.user_name,
            coupon_code=cart.coupon_code,
            discount=max(items_total - cart.total_amount, Decimal("0")),
            correlation_id=envelope.correlation_id,
            source_event_id=envelope.event_id,
        )
        order = await uow.orders.create(order)
        logger.info("order_placed", order_id=order.id, user_id=order.user_id, total_amount=str(order.total_amount))

        await self.emit(
            uow,
            OrderPlaced(
                order_id=order.id,
                user_id=order.user_id,
                user_email=order.user_email,
                user_name=order.user_name,
                total_amount=order.total_amount,
                items=[
                    LineItem(
                        product_id=i.product_id,
                        product_name=i.product_name,
                        quantity=i.quantity,
                        price=i.price,
                        total=i.total,
                    )
                    for i in order.items
                ],
                created_at=order.created_at or envelope.occurred_at,
            ),
            cause=envelope,
            aggregate_type="Order",
            aggregate_id=order.id,
        )
