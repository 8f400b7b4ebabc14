"""
购物车仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Cart


class CartRepository(ABC):

    @abstractmethod
    async def get_by_user(self, user_id: str) -> Optional[Cart]:
        pass

    @abstractmethod
    async def save(self, cart: Cart) -> Cart:
        """整体覆盖购物车内容"""
        pass

    @abstractmethod
    async def clear(self, user_id: str) -> bool:
        """清空购物车；不存在时返回 False"""
        pass
