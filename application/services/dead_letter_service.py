"""
死信运维服务

- record：消息分发器的死信落库入口
- list / get：查看死信
- replay：把保存的原始字节原样重新发布到原 topic（event_id 不变，幂等依旧生效）
- discard：人工确认放弃
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from application.dto import DeadLetterDTO
from application.ports.event_bus import EventBusPort
from core.logging_config import get_logger
from domain.common.exceptions import DeadLetterNotFoundException, DeadLetterStateConflictException
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.messaging.entity import DeadLetter, DeadLetterStatus


logger = get_logger(__name__)

# 重放时只保留标识类头部；尝试次数与错误信息从零开始
_REPLAY_HEADERS = ("x-corr-id", "x-event-type")


def to_dead_letter_dto(dl: DeadLetter) -> DeadLetterDTO:
    return DeadLetterDTO(
        event_id=dl.event_id,
        consumer_name=dl.consumer_name,
        topic=dl.topic,
        event_type=dl.event_type,
        correlation_id=dl.correlation_id,
        attempts=dl.attempts,
        error_class=dl.error_class,
        error_message=dl.error_message,
        status=dl.status.value,
        dead_lettered_at=dl.dead_lettered_at,
        replayed_at=dl.replayed_at,
        headers=dict(dl.headers),
        body=dl.body.decode("utf-8", errors="replace"),
    )


class DeadLetterService:
    def __init__(self, uow_factory: UnitOfWorkFactory, bus: Optional[EventBusPort] = None) -> None:
        self._uow_factory = uow_factory
        self._bus = bus

    async def record(self, dead_letter: DeadLetter) -> None:
        async with self._uow_factory() as uow:
            await uow.dead_letters.add(dead_letter)

    async def list(
        self,
        *,
        status: Optional[DeadLetterStatus] = DeadLetterStatus.DEAD,
        consumer_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeadLetterDTO]:
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.dead_letters.list(status=status, consumer_name=consumer_name, limit=limit)
        return [to_dead_letter_dto(d) for d in items]

    async def get(self, event_id: str, consumer_name: str) -> DeadLetterDTO:
        async with self._uow_factory(readonly=True) as uow:
            dl = await uow.dead_letters.get(event_id, consumer_name)
        if dl is None:
            raise DeadLetterNotFoundException(event_id, consumer_name)
        return to_dead_letter_dto(dl)

    async def replay(self, event_id: str, consumer_name: str) -> DeadLetterDTO:
        if self._bus is None:
            raise RuntimeError("DeadLetterService.replay needs an event bus")
        async with self._uow_factory() as uow:
            dl = await uow.dead_letters.get(event_id, consumer_name)
            if dl is None:
                raise DeadLetterNotFoundException(event_id, consumer_name)
            if dl.status != DeadLetterStatus.DEAD:
                raise DeadLetterStateConflictException(event_id, dl.status.value)

            headers = {k: v for k, v in dl.headers.items() if k in _REPLAY_HEADERS}
            await self._bus.publish_bytes(dl.topic, dl.body, key=dl.correlation_id, headers=headers)

            now = datetime.now(timezone.utc)
            await uow.dead_letters.set_status(event_id, consumer_name, DeadLetterStatus.REPLAYED, now)
            dl.status = DeadLetterStatus.REPLAYED
            dl.replayed_at = now

        logger.info("dead_letter_replayed", event_id=event_id, consumer=consumer_name, topic=dl.topic)
        return to_dead_letter_dto(dl)

    async def discard(self, event_id: str, consumer_name: str) -> DeadLetterDTO:
        async with self._uow_factory() as uow:
            dl = await uow.dead_letters.get(event_id, consumer_name)
            if dl is None:
                raise DeadLetterNotFoundException(event_id, consumer_name)
            if dl.status != DeadLetterStatus.DEAD:
                raise DeadLetterStateConflictException(event_id, dl.status.value)
            await uow.dead_letters.set_status(event_id, consumer_name, DeadLetterStatus.DISCARDED)
            dl.status = DeadLetterStatus.DISCARDED

        logger.warning("dead_letter_discarded", event_id=event_id, consumer=consumer_name)
        return to_dead_letter_dto(dl)
