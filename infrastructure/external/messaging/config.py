from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional


@dataclass(slots=True)
class TLSConfig:
    enable: bool = False
    ca_location: Optional[str] = None
    certificate: Optional[str] = None
    key: Optional[str] = None
    verify: bool = True


@dataclass(slots=True)
class SASLConfig:
    mechanism: Optional[str] = None  # e.g. "PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(slots=True)
class ProducerTuning:
    acks: str = "all"
    enable_idempotence: bool = True
    compression_type: str = "gzip"
    linger_ms: int = 5
    delivery_wait_s: float = 30.0


@dataclass(slots=True)
class ConsumerTuning:
    auto_offset_reset: str = "earliest"
    max_poll_interval_ms: int = 300000
    session_timeout_ms: int = 45000
    workers: int = 1
    inflight_max: int = 1000
    handler_timeout_s: float = 30.0
    drain_timeout_s: float = 10.0


@dataclass(slots=True)
class RetryConfig:
    # Total deliveries including the first; the last failure dead-letters.
    max_attempts: int = 5
    delay_ms: int = 1000
    max_delay_ms: int = 60_000
    retry_suffix: str = "retry"
    dlq_suffix: str = "dlq"


@dataclass(slots=True)
class KafkaConfig:
    bootstrap_servers: str = "localhost:9092"
    client_id: str = "commerce-events"
    tls: TLSConfig = field(default_factory=TLSConfig)
    sasl: SASLConfig = field(default_factory=SASLConfig)
    producer: ProducerTuning = field(default_factory=ProducerTuning)


@dataclass(slots=True)
class MessagingConfig:
    provider: Literal["kafka", "inmemory"] = "kafka"
    topic_prefix: str = "commerce.events"
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    consumer: ConsumerTuning = field(default_factory=ConsumerTuning)
    retry: RetryConfig = field(default_factory=RetryConfig)
