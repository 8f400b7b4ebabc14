from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set, Tuple

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, ConsumerRebalanceListener, TopicPartition
from aiokafka.errors import KafkaError

from ...base import ConsumeMiddleware, Consumer, HandleResult, Message, next_or_stop
from ...config import ConsumerTuning, KafkaConfig, RetryConfig
from ...headers import (
    bump_attempts,
    ensure_original_topic,
    get_not_before_ms,
    now_ms,
    set_error,
    set_not_before_ms,
)
from ...middlewares.retry import RetryPolicy
from ._security import from_headers, producer_acks, security_kwargs, to_headers


class _PartitionOffsets:
    """In-flight offsets of one partition.

    Workers settle messages out of order; only the prefix that has fully
    settled may be committed.
    """

    def __init__(self) -> None:
        self.pending: Set[int] = set()
        self.highest_done: Optional[int] = None

    def add(self, offset: int) -> None:
        self.pending.add(offset)

    def done(self, offset: int) -> None:
        self.pending.discard(offset)
        if self.highest_done is None or offset > self.highest_done:
            self.highest_done = offset

    def committable(self) -> Optional[int]:
        if self.pending:
            return min(self.pending)
        if self.highest_done is not None:
            return self.highest_done + 1
        return None


class _CommitOnRevoke(ConsumerRebalanceListener):
    def __init__(self, parent: "AiokafkaConsumer") -> None:
        self.parent = parent

    async def on_partitions_revoked(self, revoked):
        await self.parent._commit(list(revoked))
        for tp in revoked:
            self.parent._offsets.pop((tp.topic, tp.partition), None)

    async def on_partitions_assigned(self, assigned):
        for tp in assigned:
            self.parent._offsets.pop((tp.topic, tp.partition), None)


class AiokafkaConsumer(Consumer):
    """Native asyncio Kafka consumer with manual commits.

    One fetch task feeds ``workers`` handler tasks. A failed message is
    re-published to the group's retry topic with a bumped attempt header and
    a not-before timestamp; a dead-lettered one is forwarded to the DLQ topic.
    Offsets are committed only after the handler has settled the message.
    """

    def __init__(
        self,
        cfg: KafkaConfig,
        tuning: ConsumerTuning,
        retry: RetryConfig,
        middlewares: Optional[List[ConsumeMiddleware]] = None,
    ) -> None:
        self.cfg = cfg
        self.tuning = tuning
        self.retry_cfg = retry
        self.middlewares = middlewares or []
        self.log = structlog.get_logger("messaging.aiokafka.consumer")
        self._retry_policy = RetryPolicy(retry)
        self._group_id: Optional[str] = None
        self._topics: Optional[List[str]] = None
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._producer: Optional[AIOKafkaProducer] = None
        self._offsets: Dict[Tuple[str, int], _PartitionOffsets] = {}
        self._commit_lock = asyncio.Lock()
        self._queue: Optional["asyncio.Queue[Message]"] = None
        self._stopping: Optional[asyncio.Event] = None
        self._fetcher: Optional[asyncio.Task] = None
        self._workers: List[asyncio.Task] = []

    def subscribe(self, topics: List[str], group_id: str) -> None:
        self._topics = topics
        self._group_id = group_id

    async def start(self, handler: Consumer.Handler) -> None:
        if not self._topics or not self._group_id:
            raise RuntimeError("Call subscribe(topics, group_id) before start().")
        group_id = self._group_id
        topics = list(self._topics) + [self._retry_policy.retry_topic(t, group_id) for t in self._topics]

        self._consumer = AIOKafkaConsumer(
            bootstrap_servers=self.cfg.bootstrap_servers,
            client_id=self.cfg.client_id,
            group_id=group_id,
            enable_auto_commit=False,
            auto_offset_reset=self.tuning.auto_offset_reset,
            max_poll_interval_ms=self.tuning.max_poll_interval_ms,
            session_timeout_ms=self.tuning.session_timeout_ms,
            **security_kwargs(self.cfg),
        )
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.cfg.bootstrap_servers,
            client_id=self.cfg.client_id + ".consumer-producer",
            acks=producer_acks(self.cfg.producer.acks),
            compression_type=self.cfg.producer.compression_type,
            **security_kwargs(self.cfg),
        )
        await self._consumer.start()
        await self._producer.start()
        self._consumer.subscribe(topics=topics, listener=_CommitOnRevoke(self))

        self._queue = asyncio.Queue(maxsize=max(1, self.tuning.inflight_max))
        self._stopping = asyncio.Event()
        self._fetcher = asyncio.create_task(self._fetch_loop(), name=f"{group_id}-fetch")
        self._workers = [
            asyncio.create_task(self._worker(handler), name=f"{group_id}-worker-{i}")
            for i in range(max(1, self.tuning.workers))
        ]
        self.log.info("consumer_started", group_id=group_id, topics=topics, workers=len(self._workers))

    def _tracker(self, topic: str, partition: int) -> _PartitionOffsets:
        return self._offsets.setdefault((topic, partition), _PartitionOffsets())

    def _resume(self, tp: TopicPartition) -> None:
        if self._consumer is None or (self._stopping is not None and self._stopping.is_set()):
            return
        if tp in self._consumer.assignment():
            self._consumer.resume(tp)

    async def _fetch_loop(self) -> None:
        assert self._consumer is not None and self._queue is not None and self._stopping is not None
        loop = asyncio.get_running_loop()
        while not self._stopping.is_set():
            batches = await self._consumer.getmany(timeout_ms=500)
            for tp, records in batches.items():
                for rec in records:
                    headers = from_headers(rec.headers)
                    not_before = get_not_before_ms(headers)
                    if not_before is not None and not_before > now_ms():
                        # Park the partition until the message is due; later records are refetched.
                        self._consumer.pause(tp)
                        self._consumer.seek(tp, rec.offset)
                        loop.call_later((not_before - now_ms()) / 1000.0, self._resume, tp)
                        break
                    self._tracker(rec.topic, rec.partition).add(rec.offset)
                    await self._queue.put(
                        Message(
                            value=rec.value,
                            key=rec.key,
                            headers=headers,
                            topic=rec.topic,
                            partition=rec.partition,
                            offset=rec.offset,
                        )
                    )

    async def _worker(self, handler: Consumer.Handler) -> None:
        assert self._queue is not None and self._stopping is not None
        while not self._stopping.is_set():
            msg = await next_or_stop(self._queue, self._stopping)
            if msg is None or self._stopping.is_set():
                # Left uncommitted; the group sees it again after restart.
                return
            await self._process(handler, msg)

    async def _process(self, handler: Consumer.Handler, original: Message) -> None:
        msg = original
        for m in self.middlewares:
            msg = m.before_handle(msg.topic, msg.partition, msg.offset, msg)

        result = HandleResult.RETRY
        err: Optional[BaseException] = None
        try:
            try:
                result = await handler(msg)
            except Exception as e:  # noqa: BLE001
                result = HandleResult.RETRY
                err = e

            settled = True
            if result == HandleResult.RETRY:
                settled = await self._send_retry(original, err)
            elif result == HandleResult.DROP:
                await self._forward_dlq(original)
            if settled:
                self._tracker(original.topic, original.partition).done(original.offset)
                await self._commit([TopicPartition(original.topic, original.partition)])
        finally:
            for m in self.middlewares:
                m.after_handle(msg.topic, msg.partition, msg.offset, msg, result, err)

    async def _send_retry(self, original: Message, err: Optional[BaseException]) -> bool:
        assert self._producer is not None and self._group_id is not None
        headers = dict(original.headers)
        ensure_original_topic(headers, original.topic)
        attempt = bump_attempts(headers)
        main, _ = self._retry_policy.analyze_topic(original.topic, self._group_id)
        set_not_before_ms(headers, now_ms() + self._retry_policy.backoff_ms(attempt))
        if err is not None:
            set_error(headers, err)
        topic = self._retry_policy.retry_topic(main, self._group_id)
        try:
            await asyncio.wait_for(
                self._producer.send_and_wait(topic, value=original.value, key=original.key, headers=to_headers(headers)),
                timeout=self.cfg.producer.delivery_wait_s,
            )
        except (KafkaError, asyncio.TimeoutError) as e:
            self.log.error("retry_publish_failed", topic=topic, offset=original.offset, error=repr(e))
            return False
        return True

    async def _forward_dlq(self, original: Message) -> None:
        assert self._producer is not None and self._group_id is not None
        main, _ = self._retry_policy.analyze_topic(original.topic, self._group_id)
        headers = dict(original.headers)
        ensure_original_topic(headers, original.topic)
        topic = self._retry_policy.dlq_topic(main)
        try:
            await asyncio.wait_for(
                self._producer.send_and_wait(topic, value=original.value, key=original.key, headers=to_headers(headers)),
                timeout=self.cfg.producer.delivery_wait_s,
            )
        except (KafkaError, asyncio.TimeoutError) as e:
            # The dead-letter store already holds the message.
            self.log.warning("dlq_forward_failed", topic=topic, offset=original.offset, error=repr(e))

    async def _commit(self, tps: List[TopicPartition]) -> None:
        if self._consumer is None:
            return
        offsets = {}
        for tp in tps:
            tracker = self._offsets.get((tp.topic, tp.partition))
            nxt = tracker.committable() if tracker else None
            if nxt is not None:
                offsets[tp] = nxt
        if not offsets:
            return
        async with self._commit_lock:
            try:
                await self._consumer.commit(offsets)
            except KafkaError as e:
                self.log.warning("offset_commit_failed", error=repr(e))

    async def stop(self, timeout: Optional[float] = None) -> None:
        if self._stopping is None:
            return
        self._stopping.set()
        if self._fetcher is not None:
            self._fetcher.cancel()
            await asyncio.gather(self._fetcher, return_exceptions=True)
            self._fetcher = None

        workers, self._workers = self._workers, []
        if workers:
            grace = self.tuning.drain_timeout_s if timeout is None else timeout
            _, pending = await asyncio.wait(workers, timeout=max(0.0, grace))
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                self.log.warning("consumer_drain_timeout", group_id=self._group_id, cancelled=len(pending))

        try:
            await self._commit([TopicPartition(t, p) for (t, p) in self._offsets])
        finally:
            if self._consumer is not None:
                await self._consumer.stop()
                self._consumer = None
            if self._producer is not None:
                await self._producer.stop()
                self._producer = None
