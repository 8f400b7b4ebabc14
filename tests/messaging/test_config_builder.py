from core.config import ConsumerSettings, KafkaSettings
from infrastructure.external.messaging.config_builder import messaging_config_from_settings


def test_maps_settings_onto_messaging_config():
    ks = KafkaSettings(provider="kafka", bootstrap_servers="k1:9092,k2:9092", sasl_mechanism="PLAIN", tls_enable=True)
    cs = ConsumerSettings(max_attempts=3, workers=4, retry_delay_ms=200, retry_max_delay_ms=800)

    cfg = messaging_config_from_settings(ks, cs)

    assert cfg.provider == "kafka"
    assert cfg.topic_prefix == "commerce.events"
    assert cfg.kafka.bootstrap_servers == "k1:9092,k2:9092"
    assert cfg.kafka.sasl.mechanism == "PLAIN"
    assert cfg.kafka.tls.enable is True
    assert cfg.consumer.workers == 4
    assert (cfg.retry.max_attempts, cfg.retry.delay_ms, cfg.retry.max_delay_ms) == (3, 200, 800)
    assert (cfg.retry.retry_suffix, cfg.retry.dlq_suffix) == ("retry", "dlq")


def test_clamps_nonsensical_values():
    cfg = messaging_config_from_settings(
        KafkaSettings(provider="inmemory"),
        ConsumerSettings(max_attempts=0, workers=0, retry_delay_ms=500, retry_max_delay_ms=100),
    )
    assert cfg.provider == "inmemory"
    assert cfg.consumer.workers == 1
    assert cfg.retry.max_attempts == 1
    assert cfg.retry.max_delay_ms == 500
