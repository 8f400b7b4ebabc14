"""
结账应用服务：读取购物车 -> 写入 CartCheckedOut 到 outbox -> 清空购物车

三步在同一个 Unit of Work 中完成；每次结账开启新的 correlation_id，
之后整条链路（下单、支付、积分）都沿用它。
"""
from __future__ import annotations

from typing import Optional

from application.dto import CheckoutResultDTO
from application.events.contracts import CartCheckedOut, LineItem
from application.events.envelope import new_envelope, validate_correlation_id
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.exceptions import CartNotFoundException, DomainValidationException, EmptyCartException
from domain.common.unit_of_work import UnitOfWorkFactory


logger = get_logger(__name__)


class CheckoutService:
    def __init__(self, uow_factory: UnitOfWorkFactory, outbox: OutboxWriter) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox

    async def checkout(
        self,
        user_id: str,
        *,
        user_email: str = "",
        user_name: str = "",
        reward_points_used: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> CheckoutResultDTO:
        if reward_points_used is not None and reward_points_used < 0:
            raise DomainValidationException("reward_points_used must not be negative", field="reward_points_used")
        validate_correlation_id(correlation_id)

        async with self._uow_factory() as uow:
            cart = await uow.carts.get_by_user(user_id)
            if cart is None:
                raise CartNotFoundException(user_id)
            if cart.is_empty():
                raise EmptyCartException(user_id)

            payload = CartCheckedOut(
                user_id=cart.user_id,
                cart_id=cart.cart_id,
                items=[
                    LineItem(
                        product_id=i.product_id,
                        product_name=i.product_name,
                        quantity=i.quantity,
                        price=i.price,
                        total=i.total,
                    )
                    for i in cart.items
                ],
                total_amount=cart.total,
                coupon_code=cart.coupon_code,
                reward_points_used=reward_points_used,
                user_email=user_email,
                user_name=user_name,
            )
            envelope = new_envelope(payload, correlation_id=correlation_id)
            await self._outbox.enqueue(uow, envelope, aggregate_type="Cart", aggregate_id=cart.cart_id)
            await uow.carts.clear(user_id)

        logger.info(
            "cart_checked_out",
            user_id=user_id,
            cart_id=cart.cart_id,
            event_id=envelope.event_id,
            correlation_id=envelope.correlation_id,
            total_amount=str(payload.total_amount),
        )
        return CheckoutResultDTO(
            correlation_id=envelope.correlation_id,
            event_id=envelope.event_id,
            cart_id=cart.cart_id,
            user_id=user_id,
            total_amount=payload.total_amount,
        )
