"""
幂等记录仓储实现
"""
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.messaging.entity import ClaimResult
from domain.messaging.repository import ProcessedEventRepository
from infrastructure.models.messaging import ProcessedEventModel


logger = get_logger(__name__)


class SQLAlchemyProcessedEventRepository(ProcessedEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def try_claim(self, consumer_name: str, event_id: str) -> ClaimResult:
        """插入 (consumer_name, event_id)；唯一约束冲突即视为已处理。

        插入放在 SAVEPOINT 中，冲突只回滚这一步，外层事务保持可用。
        并发的两次投递中，后到者会阻塞到先到者提交后收到冲突。
        """
        try:
            async with self.session.begin_nested():
                self.session.add(ProcessedEventModel(consumer_name=consumer_name, event_id=event_id))
        except IntegrityError:
            logger.debug("processed_event_conflict", consumer=consumer_name, event_id=event_id)
            return ClaimResult.ALREADY_PROCESSED
        return ClaimResult.CLAIMED

    async def exists(self, consumer_name: str, event_id: str) -> bool:
        result = await self.session.execute(
            select(ProcessedEventModel.id).where(
                ProcessedEventModel.consumer_name == consumer_name,
                ProcessedEventModel.event_id == event_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def purge_older_than(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(ProcessedEventModel)
            .where(ProcessedEventModel.processed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
