"""
积分相关 consumer。

- RewardOrderTracking：OrderPlaced -> 在积分库记录订单，作为累积积分的前置条件
- RewardAccrual：PaymentCompleted（成功）-> 增加余额、记 Earned 流水 -> RewardPointsEarned
- RewardLedgerAudit：RewardPointsEarned / PointsRedeemed -> 核对流水，缺失时记录错误日志

PaymentCompleted 可能先于 OrderPlaced 到达。此时按 ordering_policy：
    defer  -> DependencyNotReadyError，事务回滚（不声明），稍后重投
    reject -> PermanentHandlerError，直接死信，等待人工重放
"""
from __future__ import annotations

from typing import Literal

from application.consumers.base import IdempotentConsumer, UnitOfWorkFactory
from application.events.contracts import OrderPlaced, PaymentCompleted, PointsRedeemed, RewardPointsEarned
from application.events.envelope import EventEnvelope
from application.events.errors import DependencyNotReadyError, PermanentHandlerError
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.reward.entity import LedgerEntryType, RewardAccount, points_for_purchase


logger = get_logger(__name__)

OrderingPolicy = Literal["defer", "reject"]


class RewardOrderTrackingConsumer(IdempotentConsumer):
    name = "reward-order-tracking"
    event_types = (OrderPlaced.event_type,)

    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        order: OrderPlaced = envelope.payload  # type: ignore[assignment]
        await uow.rewards.track_order(order.order_id, order.user_id, order.total_amount)
        logger.info("reward_order_tracked", order_id=order.order_id, user_id=order.user_id)


class RewardAccrualConsumer(IdempotentConsumer):
    name = "reward-accrual"
    event_types = (PaymentCompleted.event_type,)

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        outbox: OutboxWriter,
        *,
        points_per_currency_unit: int = 1,
        ordering_policy: OrderingPolicy = "defer",
    ) -> None:
        super().__init__(uow_factory, outbox)
        self.points_per_currency_unit = points_per_currency_unit
        self.ordering_policy = ordering_policy

    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        payment: PaymentCompleted = envelope.payload  # type: ignore[assignment]
        if not payment.is_successful:
            logger.info("reward_accrual_skipped", reason="payment_unsuccessful", order_id=payment.order_id)
            return

        if not await uow.rewards.is_order_tracked(payment.order_id):
            if self.ordering_policy == "reject":
                raise PermanentHandlerError(f"order {payment.order_id} unknown to rewards")
            raise DependencyNotReadyError(f"order {payment.order_id} not yet seen via OrderPlaced")

        points = points_for_purchase(payment.amount, self.points_per_currency_unit)
        if points <= 0:
            logger.info("reward_accrual_skipped", reason="zero_points", order_id=payment.order_id)
            return

        account = await uow.rewards.get_by_user(payment.user_id, for_update=True)
        if account is None:
            account = RewardAccount(user_id=payment.user_id)
        account.earn(
            points,
            order_id=payment.order_id,
            description=f"Earned {points} points for order {payment.order_id}",
            source_event_id=envelope.event_id,
        )
        account = await uow.rewards.save(account)
        logger.info("reward_points_earned", user_id=account.user_id, points=points, balance=account.points)

        await self.emit(
            uow,
            RewardPointsEarned(
                user_id=payment.user_id,
                points_earned=points,
                purchase_amount=payment.amount,
                order_id=payment.order_id,
            ),
            cause=envelope,
            aggregate_type="RewardAccount",
            aggregate_id=payment.user_id,
        )


class RewardLedgerAuditConsumer(IdempotentConsumer):
    name = "reward-ledger-audit"
    event_types = (RewardPointsEarned.event_type, PointsRedeemed.event_type)

    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        payload = envelope.payload
        if isinstance(payload, RewardPointsEarned):
            entry_type, points = LedgerEntryType.EARNED, payload.points_earned
        elif isinstance(payload, PointsRedeemed):
            entry_type, points = LedgerEntryType.REDEEMED, payload.points_redeemed
        else:
            raise PermanentHandlerError(f"unexpected payload {envelope.event_type}")

        account = await uow.rewards.get_by_user(payload.user_id)
        if account is None or not account.has_entry(entry_type, order_id=payload.order_id, points=points):
            logger.error(
                "reward_ledger_mismatch",
                user_id=payload.user_id,
                order_id=payload.order_id,
                entry_type=entry_type.value,
                points=points,
            )
            return
        logger.info("reward_ledger_verified", user_id=payload.user_id, entry_type=entry_type.value)
