"""
积分应用服务：同步兑换（RewardRedemption）与账户查询

余额不足时抛出 InsufficientPointsException，事务回滚，不写流水也不发事件。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from application.dto import LedgerEntryDTO, RedemptionResultDTO, RewardAccountDTO
from application.events.contracts import PointsRedeemed
from application.events.envelope import new_envelope, validate_correlation_id
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.exceptions import InsufficientPointsException, RewardAccountNotFoundException
from domain.common.unit_of_work import UnitOfWorkFactory


logger = get_logger(__name__)


class RewardService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        outbox: OutboxWriter,
        *,
        redemption_value_per_point: Decimal = Decimal("0.01"),
    ) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox
        self.redemption_value_per_point = redemption_value_per_point

    async def redeem(
        self,
        user_id: str,
        points: int,
        *,
        order_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> RedemptionResultDTO:
        validate_correlation_id(correlation_id)
        async with self._uow_factory() as uow:
            account = await uow.rewards.get_by_user(user_id, for_update=True)
            if account is None:
                raise InsufficientPointsException(user_id, requested=points, available=0)
            account.redeem(points, order_id=order_id)
            account = await uow.rewards.save(account)

            discount = (self.redemption_value_per_point * points).quantize(Decimal("0.01"))
            envelope = new_envelope(
                PointsRedeemed(
                    user_id=user_id,
                    points_redeemed=points,
                    discount_amount=discount,
                    order_id=order_id,
                ),
                correlation_id=correlation_id,
            )
            await self._outbox.enqueue(uow, envelope, aggregate_type="RewardAccount", aggregate_id=user_id)

        logger.info(
            "points_redeemed",
            user_id=user_id,
            points=points,
            discount_amount=str(discount),
            balance=account.points,
            event_id=envelope.event_id,
        )
        return RedemptionResultDTO(
            user_id=user_id,
            points_redeemed=points,
            discount_amount=discount,
            balance=account.points,
            event_id=envelope.event_id,
        )

    async def get_account(self, user_id: str) -> RewardAccountDTO:
        async with self._uow_factory(readonly=True) as uow:
            account = await uow.rewards.get_by_user(user_id)
        if account is None:
            raise RewardAccountNotFoundException(user_id)
        return RewardAccountDTO(
            user_id=account.user_id,
            points=account.points,
            ledger=[
                LedgerEntryDTO(
                    type=e.type.value,
                    points=e.points,
                    description=e.description,
                    order_id=e.order_id,
                    created_at=e.created_at,
                )
                for e in account.ledger
            ],
        )
