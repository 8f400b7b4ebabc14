"""
事件总线客户端：EventBusPort 的基础设施实现。

- 每种事件一个 topic：``<topic_prefix>.<EventType>``
- consumer group = consumer 名称
- 消息 key = correlation_id（同一结账流程尽量落在同一分区）

总线在进程入口构造一次并显式传递，不存在模块级单例。
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from application.events.envelope import EventEnvelope
from application.events.registry import SchemaRegistry
from application.ports.event_bus import EventHandler
from core.logging_config import get_logger
from infrastructure.events.dispatcher import DeadLetterSink, EventDispatcher
from infrastructure.external.messaging.base import (
    ConsumeMiddleware,
    Consumer,
    Message,
    PublishMiddleware,
    PublishResult,
    Publisher,
)
from infrastructure.external.messaging.config import MessagingConfig
from infrastructure.external.messaging.factory import create_consumer, create_publisher
from infrastructure.external.messaging.headers import H_CORR_ID, H_EVENT_TYPE, from_text
from infrastructure.external.messaging.middlewares import LoggingMiddleware, MetricsMiddleware
from infrastructure.external.messaging.providers.inmemory import InMemoryBroker


logger = get_logger(__name__)


class EventSubscription:
    def __init__(
        self,
        consumer_name: str,
        topics: List[str],
        consumer: Consumer,
        dispatcher: EventDispatcher,
        *,
        drain_timeout_s: float,
    ) -> None:
        self.consumer_name = consumer_name
        self.topics = topics
        self._consumer = consumer
        self._dispatcher = dispatcher
        self._drain_timeout_s = drain_timeout_s
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._consumer.subscribe(self.topics, self.consumer_name)
        await self._consumer.start(self._dispatcher)
        self._running = True
        logger.info("subscription_started", consumer=self.consumer_name, topics=self.topics)

    async def close(self, timeout: Optional[float] = None) -> None:
        if not self._running:
            return
        self._running = False
        await self._consumer.stop(self._drain_timeout_s if timeout is None else timeout)
        logger.info("subscription_closed", consumer=self.consumer_name)


class EventBus:
    def __init__(
        self,
        cfg: MessagingConfig,
        registry: SchemaRegistry,
        dead_letter_sink: DeadLetterSink,
        *,
        publish_middlewares: Optional[List[PublishMiddleware]] = None,
        consume_middlewares: Optional[List[ConsumeMiddleware]] = None,
        broker: Optional[InMemoryBroker] = None,
        publisher: Optional[Publisher] = None,
    ) -> None:
        self.cfg = cfg
        self.registry = registry
        self.broker = broker
        self._dead_letter_sink = dead_letter_sink
        self._consume_middlewares = consume_middlewares or []
        self._publisher = publisher or create_publisher(cfg, publish_middlewares, broker=broker)
        self._subscriptions: List[EventSubscription] = []

    def topic_for(self, event_type: str) -> str:
        return f"{self.cfg.topic_prefix}.{event_type}"

    async def start(self) -> None:
        await self._publisher.start()

    async def publish(self, envelope: EventEnvelope) -> PublishResult:
        body = self.registry.encode(envelope)
        return await self.publish_bytes(
            self.topic_for(envelope.event_type),
            body,
            key=envelope.correlation_id,
            headers={H_CORR_ID: envelope.correlation_id, H_EVENT_TYPE: envelope.event_type},
        )

    async def publish_bytes(
        self,
        topic: str,
        body: bytes,
        *,
        key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> PublishResult:
        msg = Message(
            value=body,
            key=key.encode("utf-8") if key else None,
            headers=from_text(headers or {}),
        )
        return await self._publisher.publish(topic, msg)

    def subscribe(
        self,
        event_types: Iterable[str],
        consumer_name: str,
        handler: EventHandler,
    ) -> EventSubscription:
        types = list(event_types)
        if not types:
            raise ValueError("subscribe() needs at least one event type")
        for t in types:
            # 订阅未注册的事件类型属于配置错误，启动时即失败
            self.registry.model_for(t)
        dispatcher = EventDispatcher(
            consumer_name,
            handler,
            self.registry,
            self.cfg.retry,
            self._dead_letter_sink,
            handler_timeout_s=self.cfg.consumer.handler_timeout_s,
        )
        consumer = create_consumer(self.cfg, self._consume_middlewares, broker=self.broker)
        subscription = EventSubscription(
            consumer_name,
            [self.topic_for(t) for t in types],
            consumer,
            dispatcher,
            drain_timeout_s=self.cfg.consumer.drain_timeout_s,
        )
        self._subscriptions.append(subscription)
        return subscription

    async def close(self, timeout: Optional[float] = None) -> None:
        for sub in self._subscriptions:
            await sub.close(timeout)
        self._subscriptions.clear()
        await self._publisher.close()


def create_event_bus(
    cfg: MessagingConfig,
    registry: SchemaRegistry,
    dead_letter_sink: DeadLetterSink,
    *,
    broker: Optional[InMemoryBroker] = None,
    metrics: Optional[MetricsMiddleware] = None,
) -> EventBus:
    """组合根使用：默认挂载日志中间件，按需挂载 Prometheus 指标中间件。"""
    if cfg.provider == "inmemory" and broker is None:
        broker = InMemoryBroker()
    middlewares = [LoggingMiddleware()]
    if metrics is not None:
        middlewares.append(metrics)
    return EventBus(
        cfg,
        registry,
        dead_letter_sink,
        publish_middlewares=list(middlewares),
        consume_middlewares=list(middlewares),
        broker=broker,
    )
