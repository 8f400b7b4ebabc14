"""
Outbox 写入：在调用方的 Unit of Work 中把事件序列化后落库。

事件与业务写入同事务提交；发布由 OutboxRelay 异步完成，之后的任何重发
都复用这里写入的字节，event_id 因而保持不变。
"""
from __future__ import annotations

from application.events.envelope import EventEnvelope
from application.events.registry import SchemaRegistry
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.messaging.entity import OutboxRecord


logger = get_logger(__name__)


class OutboxWriter:
    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry

    async def enqueue(
        self,
        uow: AbstractUnitOfWork,
        envelope: EventEnvelope,
        *,
        aggregate_type: str,
        aggregate_id: str,
    ) -> OutboxRecord:
        record = OutboxRecord(
            aggregate_type=aggregate_type,
            aggregate_id=str(aggregate_id),
            event_id=envelope.event_id,
            event_type=envelope.event_type,
            correlation_id=envelope.correlation_id,
            body=self.registry.encode(envelope),
        )
        saved = await uow.outbox.add(record)
        logger.debug(
            "outbox_enqueued",
            event_id=envelope.event_id,
            event_type=envelope.event_type,
            aggregate_type=aggregate_type,
            aggregate_id=str(aggregate_id),
        )
        return saved
