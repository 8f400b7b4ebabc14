"""
Outbox 仓储实现

领取使用 ``FOR UPDATE SKIP LOCKED``（PostgreSQL）加租约字段 ``claimed_until``：
行锁保证并发 relay 不会同时领取同一批记录，租约保证 relay 崩溃后记录可被再次领取。
SQLite 不支持行锁，测试环境依赖其库级写锁。
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.messaging.entity import OutboxRecord
from domain.messaging.repository import OutboxRepository
from infrastructure.models.messaging import OutboxModel


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SQLAlchemyOutboxRepository(OutboxRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OutboxModel) -> OutboxRecord:
        return OutboxRecord(
            id=model.id,
            aggregate_type=model.aggregate_type,
            aggregate_id=model.aggregate_id,
            event_id=model.event_id,
            event_type=model.event_type,
            correlation_id=model.correlation_id,
            body=bytes(model.body),
            created_at=_ensure_utc(model.created_at),
            published_at=_ensure_utc(model.published_at),
            attempts=model.attempts,
            last_error=model.last_error,
            claimed_until=_ensure_utc(model.claimed_until),
        )

    async def add(self, record: OutboxRecord) -> OutboxRecord:
        db_record = OutboxModel(
            aggregate_type=record.aggregate_type,
            aggregate_id=record.aggregate_id,
            event_id=record.event_id,
            event_type=record.event_type,
            correlation_id=record.correlation_id,
            body=record.body,
            created_at=record.created_at,
            attempts=record.attempts,
        )
        self.session.add(db_record)
        await self.session.flush()
        return self._to_entity(db_record)

    async def claim_batch(self, limit: int, *, now: datetime, lease_until: datetime) -> List[OutboxRecord]:
        """按创建顺序领取未发布记录并设置租约，已被其他 relay 租用的跳过

        同一聚合中只要还有更早的未发布记录不在本批次（被其他 relay 租用或锁定），
        该聚合后续的记录本批次都不领取，保证多副本下的聚合内顺序。
        """
        query = (
            select(OutboxModel)
            .where(
                OutboxModel.published_at.is_(None),
                or_(OutboxModel.claimed_until.is_(None), OutboxModel.claimed_until < now),
            )
            .order_by(OutboxModel.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(query)
        candidates = list(result.scalars().all())
        if not candidates:
            return []

        # 候选记录所属聚合的全部未发布记录（不加锁读取，包含被他人领取的）
        pending = await self.session.execute(
            select(OutboxModel.id, OutboxModel.aggregate_type, OutboxModel.aggregate_id)
            .where(
                OutboxModel.published_at.is_(None),
                OutboxModel.id <= candidates[-1].id,
                OutboxModel.aggregate_id.in_(sorted({m.aggregate_id for m in candidates})),
            )
            .order_by(OutboxModel.id)
        )
        unpublished: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        for record_id, aggregate_type, aggregate_id in pending.all():
            unpublished[(aggregate_type, aggregate_id)].append(record_id)

        claimed: List[OutboxModel] = []
        claimed_ids: Set[int] = set()
        for m in candidates:
            earlier = (i for i in unpublished[(m.aggregate_type, m.aggregate_id)] if i < m.id)
            if all(i in claimed_ids for i in earlier):
                m.claimed_until = lease_until
                claimed.append(m)
                claimed_ids.add(m.id)
        await self.session.flush()
        return [self._to_entity(m) for m in claimed]

    async def mark_published(self, record_id: int, published_at: datetime) -> bool:
        """只在记录仍未发布时生效，返回是否实际更新"""
        result = await self.session.execute(
            update(OutboxModel)
            .where(OutboxModel.id == record_id, OutboxModel.published_at.is_(None))
            .values(published_at=published_at, claimed_until=None, last_error=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_failed(self, record_id: int, error: str) -> None:
        await self.session.execute(
            update(OutboxModel)
            .where(OutboxModel.id == record_id, OutboxModel.published_at.is_(None))
            .values(
                attempts=OutboxModel.attempts + 1,
                last_error=error[:2000],
                claimed_until=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def release(self, record_ids: List[int]) -> None:
        """释放租约，不计入失败次数"""
        if not record_ids:
            return
        await self.session.execute(
            update(OutboxModel)
            .where(OutboxModel.id.in_(record_ids), OutboxModel.published_at.is_(None))
            .values(claimed_until=None)
            .execution_options(synchronize_session=False)
        )

    async def list_unpublished_before(self, cutoff: datetime, limit: int = 100) -> List[OutboxRecord]:
        result = await self.session.execute(
            select(OutboxModel)
            .where(OutboxModel.published_at.is_(None), OutboxModel.created_at < cutoff)
            .order_by(OutboxModel.id)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_aggregate(self, aggregate_type: str, aggregate_id: str) -> List[OutboxRecord]:
        result = await self.session.execute(
            select(OutboxModel)
            .where(
                OutboxModel.aggregate_type == aggregate_type,
                OutboxModel.aggregate_id == aggregate_id,
            )
            .order_by(OutboxModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_unpublished(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(OutboxModel).where(OutboxModel.published_at.is_(None))
        )
        return int(result.scalar_one())
