from __future__ import annotations

import abc
import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar


Headers = Dict[str, bytes]
T = TypeVar("T")


@dataclass(slots=True)
class Message:
    value: bytes
    key: Optional[bytes] = None
    headers: Headers = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Filled in on the consuming side.
    topic: str = ""
    partition: int = 0
    offset: int = -1

    def copy(self) -> "Message":
        return Message(
            value=self.value,
            key=self.key,
            headers=dict(self.headers),
            timestamp=self.timestamp,
            topic=self.topic,
            partition=self.partition,
            offset=self.offset,
        )


@dataclass(slots=True)
class PublishResult:
    topic: str
    partition: int
    offset: int
    timestamp: Optional[int] = None


class HandleResult(enum.Enum):
    ACK = "ACK"
    RETRY = "RETRY"
    # Settled without success: the message has been dead-lettered.
    DROP = "DROP"


class PublishMiddleware(Protocol):
    def before_publish(self, topic: str, msg: Message) -> Message: ...

    def after_publish(self, topic: str, msg: Message, result: PublishResult) -> None: ...


class ConsumeMiddleware(Protocol):
    def before_handle(self, topic: str, partition: int, offset: int, msg: Message) -> Message: ...

    def after_handle(
        self,
        topic: str,
        partition: int,
        offset: int,
        msg: Message,
        result: HandleResult,
        exc: Optional[BaseException] = None,
    ) -> None: ...


class Publisher(abc.ABC):
    async def start(self) -> None:
        return None

    @abc.abstractmethod
    async def publish(self, topic: str, msg: Message) -> PublishResult: ...

    @abc.abstractmethod
    async def close(self) -> None: ...


async def next_or_stop(queue: "asyncio.Queue[T]", stopping: asyncio.Event) -> Optional[T]:
    """Next queued item, or None once ``stopping`` is set first.

    A pending ``Queue.get`` that is cancelled leaves the item in the queue.
    """
    getter = asyncio.ensure_future(queue.get())
    stopper = asyncio.ensure_future(stopping.wait())
    try:
        await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not getter.done():
            getter.cancel()
    if getter.done() and not getter.cancelled():
        return getter.result()
    return None


class Consumer(abc.ABC):
    """Pulls messages for one consumer group and settles each after the handler.

    ``start`` returns once the worker tasks are running. ``stop`` stops intake
    at once, waits up to ``timeout`` seconds for in-flight handlers and cancels
    the rest; cancelled messages are left unacknowledged.
    """

    Handler = Callable[[Message], Awaitable[HandleResult]]

    @abc.abstractmethod
    def subscribe(self, topics: List[str], group_id: str) -> None: ...

    @abc.abstractmethod
    async def start(self, handler: Handler) -> None: ...

    @abc.abstractmethod
    async def stop(self, timeout: Optional[float] = None) -> None: ...
