import asyncio

import pytest

from infrastructure.external.messaging.base import HandleResult, Message
from infrastructure.external.messaging.config import ConsumerTuning, RetryConfig
from infrastructure.external.messaging.headers import H_ATTEMPTS, H_ORIGINAL_TOPIC, get_attempts
from infrastructure.external.messaging.providers.inmemory import (
    InMemoryBroker,
    InMemoryConsumer,
    InMemoryPublisher,
)


def _consumer(broker, *, workers=1, drain=1.0):
    return InMemoryConsumer(
        broker,
        ConsumerTuning(workers=workers, drain_timeout_s=drain),
        RetryConfig(max_attempts=5, delay_ms=1, max_delay_ms=5),
    )


@pytest.mark.asyncio
async def test_each_group_gets_every_message_and_late_groups_replay_backlog():
    broker = InMemoryBroker()
    pub = InMemoryPublisher(broker)
    await pub.publish("t", Message(value=b"one"))

    seen = {"a": [], "b": []}

    def handler_for(group):
        async def _h(msg):
            seen[group].append(msg.value)
            return HandleResult.ACK
        return _h

    a = _consumer(broker)
    a.subscribe(["t"], "a")
    await a.start(handler_for("a"))
    await pub.publish("t", Message(value=b"two"))

    b = _consumer(broker)
    b.subscribe(["t"], "b")
    await b.start(handler_for("b"))

    await broker.wait_idle()
    await a.stop()
    await b.stop()

    assert seen["a"] == [b"one", b"two"]
    assert seen["b"] == [b"one", b"two"]


@pytest.mark.asyncio
async def test_retry_redelivers_with_bumped_attempt_header():
    broker = InMemoryBroker()
    pub = InMemoryPublisher(broker)
    attempts = []

    async def handler(msg):
        attempts.append(get_attempts(msg.headers))
        if len(attempts) < 3:
            return HandleResult.RETRY
        assert msg.headers[H_ORIGINAL_TOPIC] == b"t"
        return HandleResult.ACK

    c = _consumer(broker)
    c.subscribe(["t"], "g")
    await c.start(handler)
    await pub.publish("t", Message(value=b"x"))
    await broker.wait_idle()
    await c.stop()

    assert attempts == [0, 1, 2]


@pytest.mark.asyncio
async def test_handler_exception_counts_as_retry():
    broker = InMemoryBroker()
    calls = []

    async def handler(msg):
        calls.append(msg.headers.get(H_ATTEMPTS))
        if len(calls) == 1:
            raise RuntimeError("transient")
        return HandleResult.ACK

    c = _consumer(broker)
    c.subscribe(["t"], "g")
    await c.start(handler)
    broker.append("t", Message(value=b"x"))
    await broker.wait_idle()
    await c.stop()

    assert calls == [None, b"1"]


@pytest.mark.asyncio
async def test_workers_share_one_group_queue():
    broker = InMemoryBroker()
    seen = []

    async def handler(msg):
        await asyncio.sleep(0.01)
        seen.append(msg.value)
        return HandleResult.ACK

    c = _consumer(broker, workers=3)
    c.subscribe(["t"], "g")
    await c.start(handler)
    for i in range(9):
        broker.append("t", Message(value=str(i).encode()))
    await broker.wait_idle()
    await c.stop()

    assert sorted(seen) == sorted(str(i).encode() for i in range(9))


@pytest.mark.asyncio
async def test_stop_cancels_slow_handler_and_leaves_message_unacked():
    broker = InMemoryBroker()
    started = asyncio.Event()

    async def slow(msg):
        started.set()
        await asyncio.sleep(10)
        return HandleResult.ACK

    c = _consumer(broker, drain=0.05)
    c.subscribe(["t"], "g")
    await c.start(slow)
    broker.append("t", Message(value=b"x"))
    await asyncio.wait_for(started.wait(), timeout=1)
    await c.stop()

    # 未完成的消息回到队列，同组的下一个 consumer 会再次收到
    assert broker.pending("g") == 1
    received = []

    async def fast(msg):
        received.append(msg.value)
        return HandleResult.ACK

    c2 = _consumer(broker)
    c2.subscribe(["t"], "g")
    await c2.start(fast)
    await broker.wait_idle()
    await c2.stop()
    assert received == [b"x"]


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_handler_within_grace():
    broker = InMemoryBroker()
    done = []
    started = asyncio.Event()

    async def handler(msg):
        started.set()
        await asyncio.sleep(0.05)
        done.append(msg.value)
        return HandleResult.ACK

    c = _consumer(broker, drain=2.0)
    c.subscribe(["t"], "g")
    await c.start(handler)
    broker.append("t", Message(value=b"x"))
    await asyncio.wait_for(started.wait(), timeout=1)
    await c.stop()

    assert done == [b"x"]
    assert broker.pending("g") == 0
