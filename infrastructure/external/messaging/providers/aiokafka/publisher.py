from __future__ import annotations

import asyncio
from typing import List, Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from ...base import Message, PublishMiddleware, PublishResult, Publisher
from ...config import KafkaConfig
from ...exceptions import PublishError
from ._security import producer_acks, security_kwargs, to_headers


class AiokafkaPublisher(Publisher):
    def __init__(
        self,
        cfg: KafkaConfig,
        middlewares: Optional[List[PublishMiddleware]] = None,
    ) -> None:
        self.cfg = cfg
        self.middlewares = middlewares or []
        self._producer: Optional[AIOKafkaProducer] = None
        self._start_lock = asyncio.Lock()

    async def start(self) -> None:
        async with self._start_lock:
            if self._producer is not None:
                return
            producer = AIOKafkaProducer(
                bootstrap_servers=self.cfg.bootstrap_servers,
                client_id=self.cfg.client_id,
                acks=producer_acks(self.cfg.producer.acks),
                enable_idempotence=self.cfg.producer.enable_idempotence,
                compression_type=self.cfg.producer.compression_type,
                linger_ms=self.cfg.producer.linger_ms,
                **security_kwargs(self.cfg),
            )
            try:
                await producer.start()
            except KafkaError as e:
                raise PublishError(f"cannot connect producer: {e}") from e
            self._producer = producer

    async def publish(self, topic: str, msg: Message) -> PublishResult:
        await self.start()
        assert self._producer is not None
        for m in self.middlewares:
            msg = m.before_publish(topic, msg)
        try:
            md = await asyncio.wait_for(
                self._producer.send_and_wait(topic, value=msg.value, key=msg.key, headers=to_headers(msg.headers)),
                timeout=self.cfg.producer.delivery_wait_s,
            )
        except (KafkaError, asyncio.TimeoutError) as e:
            raise PublishError(f"publish to {topic} failed: {e!r}") from e
        result = PublishResult(topic=topic, partition=md.partition, offset=md.offset, timestamp=md.timestamp)
        for m in self.middlewares:
            m.after_publish(topic, msg, result)
        return result

    async def close(self) -> None:
        producer, self._producer = self._producer, None
        if producer is not None:
            await producer.stop()
