from __future__ import annotations

from typing import List, Optional

from .base import ConsumeMiddleware, Consumer, PublishMiddleware, Publisher
from .config import MessagingConfig
from .providers.inmemory import InMemoryBroker, InMemoryConsumer, InMemoryPublisher


def create_publisher(
    cfg: MessagingConfig,
    middlewares: Optional[List[PublishMiddleware]] = None,
    *,
    broker: Optional[InMemoryBroker] = None,
) -> Publisher:
    if cfg.provider == "inmemory":
        if broker is None:
            raise ValueError("inmemory provider needs a shared InMemoryBroker")
        return InMemoryPublisher(broker, middlewares)
    if cfg.provider == "kafka":
        from .providers.aiokafka.publisher import AiokafkaPublisher

        return AiokafkaPublisher(cfg.kafka, middlewares)
    raise ValueError(f"Unsupported provider: {cfg.provider}")


def create_consumer(
    cfg: MessagingConfig,
    middlewares: Optional[List[ConsumeMiddleware]] = None,
    *,
    broker: Optional[InMemoryBroker] = None,
) -> Consumer:
    if cfg.provider == "inmemory":
        if broker is None:
            raise ValueError("inmemory provider needs a shared InMemoryBroker")
        return InMemoryConsumer(broker, cfg.consumer, cfg.retry, middlewares)
    if cfg.provider == "kafka":
        from .providers.aiokafka.consumer import AiokafkaConsumer

        return AiokafkaConsumer(cfg.kafka, cfg.consumer, cfg.retry, middlewares)
    raise ValueError(f"Unsupported provider: {cfg.provider}")
