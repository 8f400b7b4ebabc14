"""In-memory message transport.

Single-process only. Useful for local dev and tests. Topics keep their full
log so a group subscribing late still reads from the earliest message, and
each consumer group has its own queue shared by all of its workers, which
gives the same competing-consumer and fan-out shape as a broker.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, List, Optional, Set

import structlog

from ..base import (
    ConsumeMiddleware,
    Consumer,
    HandleResult,
    Message,
    PublishMiddleware,
    PublishResult,
    Publisher,
    next_or_stop,
)
from ..config import ConsumerTuning, RetryConfig
from ..headers import bump_attempts, ensure_original_topic, now_ms, set_error, set_not_before_ms
from ..middlewares.retry import RetryPolicy


logger = structlog.get_logger("messaging.inmemory")


class InMemoryBroker:
    def __init__(self) -> None:
        self._logs: Dict[str, List[Message]] = defaultdict(list)
        self._groups: Dict[str, Set[str]] = {}
        self._queues: Dict[str, "asyncio.Queue[Message]"] = {}
        self._inflight: Dict[str, int] = defaultdict(int)
        self._scheduled: Dict[str, int] = defaultdict(int)

    def append(self, topic: str, msg: Message) -> PublishResult:
        stored = msg.copy()
        stored.topic = topic
        stored.offset = len(self._logs[topic])
        self._logs[topic].append(stored)
        for group, topics in self._groups.items():
            if topic in topics:
                self._queues[group].put_nowait(stored.copy())
        return PublishResult(topic=topic, partition=0, offset=stored.offset)

    def subscribe(self, group_id: str, topics: List[str]) -> "asyncio.Queue[Message]":
        known = self._groups.setdefault(group_id, set())
        queue = self._queues.setdefault(group_id, asyncio.Queue())
        for topic in topics:
            if topic in known:
                continue
            known.add(topic)
            # auto_offset_reset=earliest
            for m in self._logs[topic]:
                queue.put_nowait(m.copy())
        return queue

    def requeue(self, group_id: str, msg: Message, delay_s: float = 0.0) -> None:
        queue = self._queues[group_id]
        if delay_s <= 0:
            queue.put_nowait(msg)
            return
        self._scheduled[group_id] += 1

        def _put() -> None:
            self._scheduled[group_id] -= 1
            queue.put_nowait(msg)

        asyncio.get_running_loop().call_later(delay_s, _put)

    def begin(self, group_id: str) -> None:
        self._inflight[group_id] += 1

    def end(self, group_id: str) -> None:
        self._inflight[group_id] -= 1

    def messages(self, topic: str) -> List[Message]:
        return [m.copy() for m in self._logs.get(topic, [])]

    def pending(self, group_id: Optional[str] = None) -> int:
        groups = [group_id] if group_id is not None else list(self._queues)
        return sum(
            self._queues[g].qsize() + self._inflight[g] + self._scheduled[g]
            for g in groups
            if g in self._queues
        )

    async def wait_idle(self, timeout: float = 5.0, poll_s: float = 0.01) -> None:
        """Wait until every group has drained its queue and settled in-flight work."""
        async def _poll() -> None:
            while self.pending():
                await asyncio.sleep(poll_s)

        await asyncio.wait_for(_poll(), timeout=timeout)


class InMemoryPublisher(Publisher):
    def __init__(self, broker: InMemoryBroker, middlewares: Optional[List[PublishMiddleware]] = None) -> None:
        self.broker = broker
        self.middlewares = middlewares or []

    async def publish(self, topic: str, msg: Message) -> PublishResult:
        for m in self.middlewares:
            msg = m.before_publish(topic, msg)
        result = self.broker.append(topic, msg)
        for m in self.middlewares:
            m.after_publish(topic, msg, result)
        return result

    async def close(self) -> None:
        return None


class InMemoryConsumer(Consumer):
    def __init__(
        self,
        broker: InMemoryBroker,
        tuning: ConsumerTuning,
        retry: RetryConfig,
        middlewares: Optional[List[ConsumeMiddleware]] = None,
    ) -> None:
        self.broker = broker
        self.tuning = tuning
        self.middlewares = middlewares or []
        self._retry_policy = RetryPolicy(retry)
        self._topics: Optional[List[str]] = None
        self._group_id: Optional[str] = None
        self._queue: Optional["asyncio.Queue[Message]"] = None
        self._stopping: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    def subscribe(self, topics: List[str], group_id: str) -> None:
        self._topics = topics
        self._group_id = group_id

    async def start(self, handler: Consumer.Handler) -> None:
        if not self._topics or not self._group_id:
            raise RuntimeError("Call subscribe(topics, group_id) before start().")
        self._queue = self.broker.subscribe(self._group_id, self._topics)
        self._stopping = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._worker(handler), name=f"{self._group_id}-worker-{i}")
            for i in range(max(1, self.tuning.workers))
        ]

    async def _worker(self, handler: Consumer.Handler) -> None:
        assert self._queue is not None and self._stopping is not None
        while not self._stopping.is_set():
            msg = await next_or_stop(self._queue, self._stopping)
            if msg is None:
                return
            if self._stopping.is_set():
                self.broker.requeue(self._group_id, msg)
                return
            await self._process(handler, msg)

    async def _process(self, handler: Consumer.Handler, original: Message) -> None:
        group_id = self._group_id
        assert group_id is not None
        self.broker.begin(group_id)
        msg = original.copy()
        result = HandleResult.RETRY
        err: Optional[BaseException] = None
        try:
            for m in self.middlewares:
                msg = m.before_handle(msg.topic, msg.partition, msg.offset, msg)
            try:
                result = await handler(msg)
            except asyncio.CancelledError:
                # Not settled: leave it for the next consumer of this group.
                self.broker.requeue(group_id, original)
                raise
            except Exception as e:  # noqa: BLE001
                result = HandleResult.RETRY
                err = e

            if result == HandleResult.RETRY:
                redelivery = original.copy()
                ensure_original_topic(redelivery.headers, redelivery.topic)
                attempt = bump_attempts(redelivery.headers)
                delay_ms = self._retry_policy.backoff_ms(attempt)
                set_not_before_ms(redelivery.headers, now_ms() + delay_ms)
                if err is not None:
                    set_error(redelivery.headers, err)
                self.broker.requeue(group_id, redelivery, delay_s=delay_ms / 1000.0)
        finally:
            self.broker.end(group_id)
            for m in self.middlewares:
                m.after_handle(msg.topic, msg.partition, msg.offset, msg, result, err)

    async def stop(self, timeout: Optional[float] = None) -> None:
        if self._stopping is None:
            return
        self._stopping.set()
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return
        grace = self.tuning.drain_timeout_s if timeout is None else timeout
        _, pending = await asyncio.wait(tasks, timeout=max(0.0, grace))
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("consumer_drain_timeout", group_id=self._group_id, cancelled=len(pending))
