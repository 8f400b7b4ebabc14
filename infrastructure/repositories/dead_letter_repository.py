"""
死信仓储实现
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.messaging.entity import DeadLetter, DeadLetterStatus
from domain.messaging.repository import DeadLetterRepository
from infrastructure.models.messaging import DeadLetterModel


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SQLAlchemyDeadLetterRepository(DeadLetterRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DeadLetterModel) -> DeadLetter:
        return DeadLetter(
            id=model.id,
            event_id=model.event_id,
            consumer_name=model.consumer_name,
            topic=model.topic,
            body=bytes(model.body),
            attempts=model.attempts,
            event_type=model.event_type,
            correlation_id=model.correlation_id,
            headers=dict(model.headers or {}),
            error_class=model.error_class,
            error_message=model.error_message,
            status=DeadLetterStatus(model.status),
            dead_lettered_at=_ensure_utc(model.dead_lettered_at),
            replayed_at=_ensure_utc(model.replayed_at),
        )

    async def _get_model(self, event_id: str, consumer_name: str) -> Optional[DeadLetterModel]:
        result = await self.session.execute(
            select(DeadLetterModel).where(
                DeadLetterModel.event_id == event_id,
                DeadLetterModel.consumer_name == consumer_name,
            )
        )
        return result.scalar_one_or_none()

    async def add(self, dead_letter: DeadLetter) -> DeadLetter:
        """写入死信；同一 (consumer, event_id) 再次死信时覆盖为最新一次失败"""
        db_dl = await self._get_model(dead_letter.event_id, dead_letter.consumer_name)
        if db_dl is None:
            db_dl = DeadLetterModel(event_id=dead_letter.event_id, consumer_name=dead_letter.consumer_name)
            self.session.add(db_dl)
        db_dl.topic = dead_letter.topic
        db_dl.event_type = dead_letter.event_type
        db_dl.correlation_id = dead_letter.correlation_id
        db_dl.body = dead_letter.body
        db_dl.headers = dict(dead_letter.headers)
        db_dl.attempts = dead_letter.attempts
        db_dl.error_class = dead_letter.error_class
        db_dl.error_message = dead_letter.error_message
        db_dl.status = DeadLetterStatus.DEAD.value
        db_dl.dead_lettered_at = dead_letter.dead_lettered_at
        db_dl.replayed_at = None
        await self.session.flush()
        return self._to_entity(db_dl)

    async def get(self, event_id: str, consumer_name: str) -> Optional[DeadLetter]:
        db_dl = await self._get_model(event_id, consumer_name)
        return self._to_entity(db_dl) if db_dl else None

    async def list(
        self,
        *,
        status: Optional[DeadLetterStatus] = None,
        consumer_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetter]:
        query = select(DeadLetterModel)
        if status is not None:
            query = query.where(DeadLetterModel.status == status.value)
        if consumer_name:
            query = query.where(DeadLetterModel.consumer_name == consumer_name)
        query = query.order_by(DeadLetterModel.dead_lettered_at.desc(), DeadLetterModel.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def set_status(
        self,
        event_id: str,
        consumer_name: str,
        status: DeadLetterStatus,
        at: Optional[datetime] = None,
    ) -> None:
        values = {"status": status.value}
        if status == DeadLetterStatus.REPLAYED:
            values["replayed_at"] = at or datetime.now(timezone.utc)
        await self.session.execute(
            update(DeadLetterModel)
            .where(
                DeadLetterModel.event_id == event_id,
                DeadLetterModel.consumer_name == consumer_name,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
