"""
Event bus port (contracts-first).

The application publishes envelopes and registers handlers through this
protocol only; the concrete transport (Kafka, in-memory) lives in
infrastructure and is injected at the composition root. There is no
module-level bus.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from application.events.envelope import EventEnvelope


EventHandler = Callable[[EventEnvelope], Awaitable[None]]


class Subscription(Protocol):
    consumer_name: str

    async def start(self) -> None: ...

    async def close(self, timeout: Optional[float] = None) -> None:
        """Stop intake, wait up to ``timeout`` for in-flight handlers, cancel the rest."""
        ...


class EventBusPort(Protocol):
    def topic_for(self, event_type: str) -> str: ...

    async def publish(self, envelope: EventEnvelope) -> Any:
        """Publish one envelope; returns the broker ack or raises TransportError."""
        ...

    async def publish_bytes(
        self,
        topic: str,
        body: bytes,
        *,
        key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Publish an already-serialized envelope without touching its bytes."""
        ...

    def subscribe(
        self,
        event_types: Iterable[str],
        consumer_name: str,
        handler: EventHandler,
    ) -> Subscription: ...


__all__ = ["EventHandler", "Subscription", "EventBusPort"]
