from __future__ import annotations

import contextvars
import time
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from ..base import ConsumeMiddleware, HandleResult, Message, PublishMiddleware, PublishResult


_BUCKETS = (1, 5, 10, 50, 100, 500, 1000, 5000)


class MetricsMiddleware(PublishMiddleware, ConsumeMiddleware):
    def __init__(self, namespace: str = "messaging", registry: Optional[CollectorRegistry] = None) -> None:
        registry = registry if registry is not None else REGISTRY
        self.pub_counter = Counter(
            f"{namespace}_publish_total", "Publish attempts", ["topic", "result"], registry=registry
        )
        self.pub_latency = Histogram(
            f"{namespace}_publish_latency_ms", "Publish latency ms", buckets=_BUCKETS, registry=registry
        )
        self.con_counter = Counter(
            f"{namespace}_consume_total", "Consume results", ["topic", "result"], registry=registry
        )
        self.con_latency = Histogram(
            f"{namespace}_handle_latency_ms", "Handle latency ms", buckets=_BUCKETS, registry=registry
        )
        # Use context-local storage to avoid cross-task interference
        self._pub_start: contextvars.ContextVar[Optional[float]] = contextvars.ContextVar(
            "messaging_pub_start_ts", default=None
        )
        self._con_start: contextvars.ContextVar[Optional[float]] = contextvars.ContextVar(
            "messaging_con_start_ts", default=None
        )

    def before_publish(self, topic: str, msg: Message) -> Message:  # type: ignore[override]
        self._pub_start.set(time.perf_counter())
        return msg

    def after_publish(self, topic: str, msg: Message, result: PublishResult) -> None:  # type: ignore[override]
        self.pub_counter.labels(topic=topic, result="ok").inc()
        ts = self._pub_start.get()
        if ts is not None:
            self.pub_latency.observe((time.perf_counter() - ts) * 1000)
            self._pub_start.set(None)

    def publish_failed(self, topic: str) -> None:
        self.pub_counter.labels(topic=topic, result="error").inc()
        self._pub_start.set(None)

    def before_handle(self, topic: str, partition: int, offset: int, msg: Message) -> Message:  # type: ignore[override]
        self._con_start.set(time.perf_counter())
        return msg

    def after_handle(
        self,
        topic: str,
        partition: int,
        offset: int,
        msg: Message,
        result: HandleResult,
        exc: Optional[BaseException] = None,
    ) -> None:  # type: ignore[override]
        self.con_counter.labels(topic=topic, result=result.value.lower()).inc()
        ts = self._con_start.get()
        if ts is not None:
            self.con_latency.observe((time.perf_counter() - ts) * 1000)
            self._con_start.set(None)
