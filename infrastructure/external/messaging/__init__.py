"""Broker-agnostic messaging layer: Kafka (aiokafka) or an in-process broker for tests."""
from .base import Consumer, HandleResult, Message, Publisher, PublishResult
from .config import ConsumerTuning, KafkaConfig, MessagingConfig, RetryConfig
from .exceptions import MessagingError, NonRetryableError, PublishError, TransportError
from .factory import create_consumer, create_publisher
from .middlewares import RetryDecision, RetryPolicy
from .providers.inmemory import InMemoryBroker

__all__ = [
    "Consumer",
    "ConsumerTuning",
    "HandleResult",
    "InMemoryBroker",
    "KafkaConfig",
    "Message",
    "MessagingConfig",
    "MessagingError",
    "NonRetryableError",
    "PublishError",
    "PublishResult",
    "Publisher",
    "RetryConfig",
    "RetryDecision",
    "RetryPolicy",
    "TransportError",
    "create_consumer",
    "create_publisher",
]
