"""
积分仓储接口
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from .entity import RewardAccount


class RewardRepository(ABC):
    """积分仓储抽象接口"""

    @abstractmethod
    async def get_by_user(self, user_id: str, *, for_update: bool = False) -> Optional[RewardAccount]:
        """读取账户及流水；for_update 时对账户行加锁"""
        pass

    @abstractmethod
    async def save(self, account: RewardAccount) -> RewardAccount:
        """保存余额并追加尚未持久化的流水"""
        pass

    @abstractmethod
    async def track_order(self, order_id: str, user_id: str, total_amount: Decimal) -> None:
        """记录已知订单（来自 OrderPlaced），供积分累积校验前置依赖"""
        pass

    @abstractmethod
    async def is_order_tracked(self, order_id: str) -> bool:
        pass
