"""
事件 worker 入口：构建事件总线，运行指定服务的 consumer、outbox relay 与幂等记录清理。

    python worker_main.py orders
    python worker_main.py rewards notifications --metrics-port 9100
    python worker_main.py all --create-tables
"""
from __future__ import annotations

import argparse
import asyncio
import signal
from contextlib import suppress
from typing import Dict, List

from prometheus_client import start_http_server
from sqlalchemy.exc import SQLAlchemyError

from application.consumers import (
    EmailNotificationConsumer,
    IdempotentConsumer,
    OrderPlacementConsumer,
    RewardAccrualConsumer,
    RewardLedgerAuditConsumer,
    RewardOrderTrackingConsumer,
)
from application.events.registry import default_registry
from application.services.dead_letter_service import DeadLetterService
from application.services.outbox_writer import OutboxWriter
from application.services.retention_service import ProcessedEventRetention
from core.config import Settings, settings
from core.logging_config import configure_logging, get_logger
from domain.common.unit_of_work import UnitOfWorkFactory
from infrastructure.database import create_tables, dispose_engine
from infrastructure.events.bus import EventBus, create_event_bus
from infrastructure.external.messaging.config_builder import messaging_config_from_settings
from infrastructure.external.messaging.middlewares import MetricsMiddleware
from infrastructure.notifications.log_sender import LoggingNotificationSender
from infrastructure.outbox.relay import OutboxRelay
from infrastructure.unit_of_work import make_uow_factory


logger = get_logger(__name__)

SERVICES = ("orders", "rewards", "notifications")
PURGE_INTERVAL_S = 3600.0


def build_consumers(
    services: List[str],
    uow_factory: UnitOfWorkFactory,
    outbox: OutboxWriter,
    cfg: Settings,
) -> List[IdempotentConsumer]:
    consumers: Dict[str, List[IdempotentConsumer]] = {
        "orders": [OrderPlacementConsumer(uow_factory, outbox)],
        "rewards": [
            RewardOrderTrackingConsumer(uow_factory, outbox),
            RewardAccrualConsumer(
                uow_factory,
                outbox,
                points_per_currency_unit=cfg.rewards.points_per_currency_unit,
                ordering_policy=cfg.consumer.ordering_policy,
            ),
            RewardLedgerAuditConsumer(uow_factory, outbox),
        ],
        "notifications": [EmailNotificationConsumer(uow_factory, outbox, LoggingNotificationSender())],
    }
    selected: List[IdempotentConsumer] = []
    for name in services:
        selected.extend(consumers[name])
    return selected


async def _purge_periodically(
    retention: ProcessedEventRetention,
    stopping: asyncio.Event,
    interval_s: float = PURGE_INTERVAL_S,
) -> None:
    while not stopping.is_set():
        try:
            await retention.purge()
        except SQLAlchemyError as exc:
            # 下一轮再试
            logger.warning("processed_events_purge_failed", error=str(exc), error_class=type(exc).__name__)
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stopping.wait(), timeout=interval_s)


async def run(services: List[str], *, relay_enabled: bool, metrics_port: int | None, create_schema: bool) -> None:
    if create_schema:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    metrics = None
    if metrics_port:
        start_http_server(metrics_port)
        metrics = MetricsMiddleware(namespace=settings.SERVICE_NAME.replace("-", "_"))
        logger.info("metrics_server_started", port=metrics_port)

    uow_factory = make_uow_factory()
    registry = default_registry()
    outbox = OutboxWriter(registry)

    # 死信只需要写库，不需要总线
    sink = DeadLetterService(uow_factory).record
    bus: EventBus = create_event_bus(
        messaging_config_from_settings(settings.kafka, settings.consumer),
        registry,
        sink,
        metrics=metrics,
    )
    await bus.start()

    subscriptions = []
    for consumer in build_consumers(services, uow_factory, outbox, settings):
        subscriptions.append(bus.subscribe(consumer.event_types, consumer.name, consumer))

    relay = OutboxRelay(
        uow_factory,
        bus,
        batch_size=settings.outbox.batch_size,
        poll_interval_s=settings.outbox.poll_interval_s,
        claim_lease_s=settings.outbox.claim_lease_s,
        backoff_base_s=settings.outbox.backoff_base_s,
        backoff_cap_s=settings.outbox.backoff_cap_s,
        backoff_jitter=settings.outbox.backoff_jitter,
        stuck_threshold_s=settings.outbox.stuck_threshold_s,
    )
    retention = ProcessedEventRetention(uow_factory, retention_days=settings.idempotency.retention_days)

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stopping.set)

    tasks = [asyncio.create_task(_purge_periodically(retention, stopping), name="idempotency-purge")]
    if relay_enabled:
        tasks.append(asyncio.create_task(relay.run(), name="outbox-relay"))

    for sub in subscriptions:
        await sub.start()
    logger.info("worker_started", services=services, consumers=[s.consumer_name for s in subscriptions])

    try:
        await stopping.wait()
    finally:
        logger.info("worker_stopping", drain_timeout_s=settings.consumer.drain_timeout_s)
        relay.stop()
        stopping.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        await bus.close(settings.consumer.drain_timeout_s)
        await dispose_engine()
        logger.info("worker_stopped")


def main() -> None:
    ap = argparse.ArgumentParser(description="Commerce event worker")
    ap.add_argument(
        "services",
        nargs="+",
        choices=[*SERVICES, "all"],
        help="Which service consumers to run",
    )
    ap.add_argument("--no-relay", action="store_true", help="Do not run the outbox relay in this process")
    ap.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")
    ap.add_argument("--create-tables", action="store_true", help="Create tables before starting (development)")
    args = ap.parse_args()

    services = list(SERVICES) if "all" in args.services else list(dict.fromkeys(args.services))

    # 初始化日志：在入口处显式配置，避免模块导入时的副作用
    configure_logging()
    asyncio.run(
        run(
            services,
            relay_enabled=not args.no_relay,
            metrics_port=args.metrics_port,
            create_schema=args.create_tables,
        )
    )


if __name__ == "__main__":
    main()
