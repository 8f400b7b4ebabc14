"""Map application settings onto the messaging dataclasses.

Only the worker entry point calls this; the messaging package itself never
imports ``core`` so it can be configured directly in tests.
"""
from __future__ import annotations

from typing import Optional, Protocol

from .config import (
    ConsumerTuning,
    KafkaConfig,
    MessagingConfig,
    ProducerTuning,
    RetryConfig,
    SASLConfig,
    TLSConfig,
)


class KafkaSettingsLike(Protocol):
    provider: str
    bootstrap_servers: str
    client_id: str
    topic_prefix: str

    tls_enable: bool
    tls_ca_location: Optional[str]
    tls_certificate: Optional[str]
    tls_key: Optional[str]
    tls_verify: bool

    sasl_mechanism: Optional[str]
    sasl_username: Optional[str]
    sasl_password: Optional[str]

    producer_acks: str
    producer_enable_idempotence: bool
    producer_compression_type: str
    producer_linger_ms: int
    producer_delivery_wait_s: float

    consumer_auto_offset_reset: str
    consumer_max_poll_interval_ms: int
    consumer_session_timeout_ms: int


class ConsumerSettingsLike(Protocol):
    max_attempts: int
    workers: int
    handler_timeout_s: float
    drain_timeout_s: float
    retry_delay_ms: int
    retry_max_delay_ms: int
    retry_topic_suffix: str
    dlq_topic_suffix: str


def _kafka(ks: KafkaSettingsLike) -> KafkaConfig:
    return KafkaConfig(
        bootstrap_servers=ks.bootstrap_servers,
        client_id=ks.client_id,
        tls=TLSConfig(
            enable=ks.tls_enable,
            ca_location=ks.tls_ca_location,
            certificate=ks.tls_certificate,
            key=ks.tls_key,
            verify=ks.tls_verify,
        ),
        sasl=SASLConfig(
            mechanism=ks.sasl_mechanism,
            username=ks.sasl_username,
            password=ks.sasl_password,
        ),
        producer=ProducerTuning(
            acks=ks.producer_acks,
            enable_idempotence=ks.producer_enable_idempotence,
            compression_type=ks.producer_compression_type,
            linger_ms=ks.producer_linger_ms,
            delivery_wait_s=ks.producer_delivery_wait_s,
        ),
    )


def _retry(cs: ConsumerSettingsLike) -> RetryConfig:
    delay_ms = max(0, cs.retry_delay_ms)
    return RetryConfig(
        max_attempts=max(1, cs.max_attempts),
        delay_ms=delay_ms,
        max_delay_ms=max(delay_ms, cs.retry_max_delay_ms),
        retry_suffix=cs.retry_topic_suffix,
        dlq_suffix=cs.dlq_topic_suffix,
    )


def messaging_config_from_settings(ks: KafkaSettingsLike, cs: ConsumerSettingsLike) -> MessagingConfig:
    consumer = ConsumerTuning(
        auto_offset_reset=ks.consumer_auto_offset_reset,
        max_poll_interval_ms=ks.consumer_max_poll_interval_ms,
        session_timeout_ms=ks.consumer_session_timeout_ms,
        workers=max(1, cs.workers),
        handler_timeout_s=cs.handler_timeout_s,
        drain_timeout_s=cs.drain_timeout_s,
    )
    return MessagingConfig(
        provider="inmemory" if ks.provider == "inmemory" else "kafka",
        topic_prefix=ks.topic_prefix,
        kafka=_kafka(ks),
        consumer=consumer,
        retry=_retry(cs),
    )


__all__ = ["messaging_config_from_settings", "KafkaSettingsLike", "ConsumerSettingsLike"]
