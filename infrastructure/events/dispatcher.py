"""
消息分发：把传输层的一条消息交给事件处理器，并按重试策略结算。

结算规则：
- 处理成功 -> ACK
- 契约错误（未知 event_type / 无法解码）或 PermanentHandlerError -> 立即死信
- 其他异常 -> RETRY，直到第 max_attempts 次投递仍失败后死信

死信先写入死信存储，成功后才从在线队列确认（DROP）；写入失败时返回
RETRY，消息不会丢失。
"""
from __future__ import annotations

import asyncio
import hashlib
from typing import Awaitable, Callable, Optional

from structlog.contextvars import bound_contextvars

from application.events.envelope import EventEnvelope
from application.events.errors import EventContractError, PermanentHandlerError
from application.events.registry import SchemaRegistry, peek_identity
from application.ports.event_bus import EventHandler
from core.logging_config import get_logger
from domain.messaging.entity import DeadLetter
from infrastructure.external.messaging.base import HandleResult, Message
from infrastructure.external.messaging.config import RetryConfig
from infrastructure.external.messaging.headers import get_attempts, original_topic, to_text
from infrastructure.external.messaging.middlewares.retry import RetryPolicy


logger = get_logger(__name__)

DeadLetterSink = Callable[[DeadLetter], Awaitable[None]]

NON_RETRYABLE = (EventContractError, PermanentHandlerError)


class EventDispatcher:
    def __init__(
        self,
        consumer_name: str,
        handler: EventHandler,
        registry: SchemaRegistry,
        retry: RetryConfig,
        dead_letter_sink: DeadLetterSink,
        *,
        handler_timeout_s: Optional[float] = None,
    ) -> None:
        self.consumer_name = consumer_name
        self.handler = handler
        self.registry = registry
        self.policy = RetryPolicy(retry, non_retryable=NON_RETRYABLE)
        self.dead_letter_sink = dead_letter_sink
        self.handler_timeout_s = handler_timeout_s

    async def __call__(self, msg: Message) -> HandleResult:
        attempt = get_attempts(msg.headers) + 1
        topic = original_topic(msg.headers, msg.topic)
        with bound_contextvars(consumer=self.consumer_name, topic=topic, attempt=attempt):
            try:
                envelope = self.registry.decode(msg.value)
            except EventContractError as e:
                logger.error("event_undecodable", error_class=type(e).__name__, error=str(e))
                return await self._dead_letter(msg, topic, attempt, e, None)

            with bound_contextvars(
                event_id=envelope.event_id,
                event_type=envelope.event_type,
                correlation_id=envelope.correlation_id,
            ):
                try:
                    if self.handler_timeout_s:
                        await asyncio.wait_for(self.handler(envelope), timeout=self.handler_timeout_s)
                    else:
                        await self.handler(envelope)
                except Exception as e:  # noqa: BLE001
                    decision = self.policy.decide(msg.topic, self.consumer_name, attempt, e)
                    if decision.is_dlq:
                        return await self._dead_letter(msg, topic, attempt, e, envelope)
                    logger.warning(
                        "event_handler_failed",
                        error_class=type(e).__name__,
                        error=str(e),
                        retry_in_ms=decision.delay_ms,
                    )
                    return HandleResult.RETRY
        return HandleResult.ACK

    async def _dead_letter(
        self,
        msg: Message,
        topic: str,
        attempt: int,
        exc: BaseException,
        envelope: Optional[EventEnvelope],
    ) -> HandleResult:
        if envelope is not None:
            event_id, event_type, correlation_id = envelope.event_id, envelope.event_type, envelope.correlation_id
        else:
            event_id, event_type, correlation_id = peek_identity(msg.value)
        dead_letter = DeadLetter(
            # 无法解析出 event_id 时用消息体摘要，保证同一条消息重复死信落到同一行
            event_id=event_id or hashlib.sha256(msg.value).hexdigest(),
            consumer_name=self.consumer_name,
            topic=topic,
            body=msg.value,
            attempts=attempt,
            event_type=event_type,
            correlation_id=correlation_id,
            headers=to_text(msg.headers),
            error_class=type(exc).__name__,
            error_message=str(exc)[:2048],
        )
        try:
            await self.dead_letter_sink(dead_letter)
        except Exception:  # noqa: BLE001
            logger.exception("dead_letter_persist_failed", event_id=dead_letter.event_id)
            return HandleResult.RETRY
        logger.error(
            "event_dead_lettered",
            event_id=dead_letter.event_id,
            error_class=dead_letter.error_class,
            error=dead_letter.error_message,
            attempts=attempt,
        )
        return HandleResult.DROP
