"""
幂等 consumer 骨架。

每次投递的处理顺序固定为：
    声明 (consumer_name, event_id) -> 本地业务写入 -> 后续事件写入 outbox -> 提交 -> 确认

声明、业务写入与 outbox 记录在同一事务中；任一步失败整体回滚，消息不被
确认，稍后重投。重复投递在声明处被识别为 ALREADY_PROCESSED 并直接确认。
"""
from __future__ import annotations

import abc
from typing import ClassVar, Optional, Tuple

from structlog.contextvars import bound_contextvars

from application.events.envelope import EventEnvelope, new_envelope
from application.events.contracts import EventPayload
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork, UnitOfWorkFactory
from domain.messaging.entity import ClaimResult


logger = get_logger(__name__)


class IdempotentConsumer(abc.ABC):
    name: ClassVar[str]
    event_types: ClassVar[Tuple[str, ...]]

    def __init__(self, uow_factory: UnitOfWorkFactory, outbox: OutboxWriter) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox

    async def __call__(self, envelope: EventEnvelope) -> None:
        with bound_contextvars(
            consumer=self.name,
            event_id=envelope.event_id,
            event_type=envelope.event_type,
            correlation_id=envelope.correlation_id,
        ):
            async with self._uow_factory() as uow:
                claim = await uow.processed_events.try_claim(self.name, envelope.event_id)
                if claim is ClaimResult.ALREADY_PROCESSED:
                    logger.info("duplicate_delivery_skipped")
                    return
                await self.handle(uow, envelope)
            logger.info("event_processed")
            await self.after_commit(envelope)

    @abc.abstractmethod
    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        """在已声明的事务内执行本地写入；抛出异常即回滚并触发重投。"""

    async def after_commit(self, envelope: EventEnvelope) -> None:
        """事务提交后的尽力而为副作用（例如发送通知），默认无。"""
        return None

    async def emit(
        self,
        uow: AbstractUnitOfWork,
        payload: EventPayload,
        *,
        cause: EventEnvelope,
        aggregate_type: str,
        aggregate_id: str,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        envelope = new_envelope(payload, correlation_id=correlation_id, causation=cause)
        await self._outbox.enqueue(uow, envelope, aggregate_type=aggregate_type, aggregate_id=aggregate_id)
        return envelope
