"""
积分仓储实现
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.reward.entity import LedgerEntry, LedgerEntryType, RewardAccount
from domain.reward.repository import RewardRepository
from infrastructure.models.reward import (
    RewardAccountModel,
    RewardLedgerModel,
    RewardTrackedOrderModel,
)


logger = get_logger(__name__)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SQLAlchemyRewardRepository(RewardRepository):
    """积分仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RewardAccountModel) -> RewardAccount:
        return RewardAccount(
            id=model.id,
            user_id=model.user_id,
            points=model.points,
            updated_at=_ensure_utc(model.updated_at),
            ledger=[
                LedgerEntry(
                    id=e.id,
                    type=LedgerEntryType(e.type),
                    points=e.points,
                    description=e.description,
                    order_id=e.order_id,
                    source_event_id=e.source_event_id,
                    created_at=_ensure_utc(e.created_at),
                )
                for e in model.ledger
            ],
        )

    async def get_by_user(self, user_id: str, *, for_update: bool = False) -> Optional[RewardAccount]:
        """读取账户及流水；for_update 时对账户行加锁"""
        query = select(RewardAccountModel).where(RewardAccountModel.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_account = result.scalar_one_or_none()
        return self._to_entity(db_account) if db_account else None

    async def save(self, account: RewardAccount) -> RewardAccount:
        """保存余额并追加尚未持久化的流水"""
        if account.id is None:
            db_account = RewardAccountModel(user_id=account.user_id, points=account.points)
            self.session.add(db_account)
            await self.session.flush()
        else:
            db_account = await self.session.get(RewardAccountModel, account.id)
            if db_account is None:
                raise ValueError(f"Reward account {account.id} does not exist")
            db_account.points = account.points
        db_account.updated_at = account.updated_at or datetime.now(timezone.utc)

        new_entries = [e for e in account.ledger if e.id is None]
        for entry in new_entries:
            self.session.add(
                RewardLedgerModel(
                    account_id=db_account.id,
                    type=entry.type.value,
                    points=entry.points,
                    description=entry.description,
                    order_id=entry.order_id,
                    source_event_id=entry.source_event_id,
                    created_at=entry.created_at,
                )
            )
        await self.session.flush()
        # 重新加载流水，保证返回的实体带有持久化ID
        await self.session.refresh(db_account, attribute_names=["ledger", "points", "updated_at"])
        logger.debug(
            "reward_account_saved",
            user_id=account.user_id,
            points=db_account.points,
            new_entries=len(new_entries),
        )
        return self._to_entity(db_account)

    async def track_order(self, order_id: str, user_id: str, total_amount: Decimal) -> None:
        """记录已知订单（来自 OrderPlaced），供积分累积校验前置依赖"""
        existing = await self.session.get(RewardTrackedOrderModel, order_id)
        if existing is not None:
            return
        self.session.add(
            RewardTrackedOrderModel(order_id=order_id, user_id=user_id, total_amount=total_amount)
        )
        await self.session.flush()

    async def is_order_tracked(self, order_id: str) -> bool:
        result = await self.session.execute(
            select(RewardTrackedOrderModel.order_id).where(RewardTrackedOrderModel.order_id == order_id)
        )
        return result.scalar_one_or_none() is not None
