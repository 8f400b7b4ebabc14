"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from domain.cart.repository import CartRepository
from domain.messaging.repository import (
    DeadLetterRepository,
    OutboxRepository,
    ProcessedEventRepository,
)
from domain.order.repository import OrderRepository
from domain.reward.repository import RewardRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    业务写入、幂等声明（processed_events）与 outbox 记录共享同一个事务：
    要么一起提交，要么一起回滚。
    """

    orders: OrderRepository
    rewards: RewardRepository
    carts: CartRepository
    outbox: OutboxRepository
    processed_events: ProcessedEventRepository
    dead_letters: DeadLetterRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...


UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]
