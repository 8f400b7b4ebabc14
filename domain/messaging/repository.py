"""
消息可靠性仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import ClaimResult, DeadLetter, DeadLetterStatus, OutboxRecord


class OutboxRepository(ABC):
    """Outbox 仓储：写入随业务事务提交，发布状态只由 relay 修改。"""

    @abstractmethod
    async def add(self, record: OutboxRecord) -> OutboxRecord:
        pass

    @abstractmethod
    async def claim_batch(self, limit: int, *, now: datetime, lease_until: datetime) -> List[OutboxRecord]:
        """按创建顺序领取未发布记录并设置租约，已被其他 relay 租用的跳过"""
        pass

    @abstractmethod
    async def mark_published(self, record_id: int, published_at: datetime) -> bool:
        """只在记录仍未发布时生效，返回是否实际更新"""
        pass

    @abstractmethod
    async def mark_failed(self, record_id: int, error: str) -> None:
        pass

    @abstractmethod
    async def release(self, record_ids: List[int]) -> None:
        """释放租约，不计入失败次数"""
        pass

    @abstractmethod
    async def list_unpublished_before(self, cutoff: datetime, limit: int = 100) -> List[OutboxRecord]:
        pass

    @abstractmethod
    async def list_by_aggregate(self, aggregate_type: str, aggregate_id: str) -> List[OutboxRecord]:
        pass

    @abstractmethod
    async def count_unpublished(self) -> int:
        pass


class ProcessedEventRepository(ABC):
    """幂等守卫：(consumer_name, event_id) 唯一"""

    @abstractmethod
    async def try_claim(self, consumer_name: str, event_id: str) -> ClaimResult:
        pass

    @abstractmethod
    async def exists(self, consumer_name: str, event_id: str) -> bool:
        pass

    @abstractmethod
    async def purge_older_than(self, cutoff: datetime) -> int:
        pass


class DeadLetterRepository(ABC):

    @abstractmethod
    async def add(self, dead_letter: DeadLetter) -> DeadLetter:
        """写入死信；同一 (consumer, event_id) 再次死信时覆盖为最新一次失败"""
        pass

    @abstractmethod
    async def get(self, event_id: str, consumer_name: str) -> Optional[DeadLetter]:
        pass

    @abstractmethod
    async def list(
        self,
        *,
        status: Optional[DeadLetterStatus] = None,
        consumer_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetter]:
        pass

    @abstractmethod
    async def set_status(
        self,
        event_id: str,
        consumer_name: str,
        status: DeadLetterStatus,
        at: Optional[datetime] = None,
    ) -> None:
        pass
