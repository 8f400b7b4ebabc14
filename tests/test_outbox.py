import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from application.events.contracts import OrderPlaced, UserRegistered
from application.events.envelope import new_envelope
from application.services.user_registration_service import UserRegistrationService
from domain.common.exceptions import DomainValidationException
from infrastructure.external.messaging.exceptions import PublishError
from infrastructure.outbox.relay import OutboxPublishError, OutboxRelay, wait_jittered_exponential


class FlakyBus:
    """发布到指定 event_id 时失败 ``failures`` 次，其余记录直接成功"""

    def __init__(self, registry, fail_event_ids=(), failures=1):
        self.registry = registry
        self.fail_event_ids = set(fail_event_ids)
        self.failures = failures
        self.published = []

    def topic_for(self, event_type):
        return f"test.{event_type}"

    async def publish_bytes(self, topic, body, *, key=None, headers=None):
        event_id = self.registry.decode(body).event_id
        if event_id in self.fail_event_ids and self.failures > 0:
            self.failures -= 1
            raise PublishError("broker unavailable")
        self.published.append((topic, event_id, key, headers))


def _order_envelope(order_id, correlation_id="corr"):
    return new_envelope(
        OrderPlaced(order_id=order_id, user_id="u-1", total_amount=Decimal("1"), items=[]),
        correlation_id=correlation_id,
    )


@pytest.mark.asyncio
async def test_failed_write_leaves_no_outbox_record(uow_factory, outbox_writer):
    with pytest.raises(RuntimeError):
        async with uow_factory() as uow:
            await outbox_writer.enqueue(uow, _order_envelope("o-1"), aggregate_type="Order", aggregate_id="o-1")
            raise RuntimeError("aggregate write failed")

    async with uow_factory(readonly=True) as uow:
        assert await uow.outbox.count_unpublished() == 0


@pytest.mark.asyncio
async def test_successful_write_is_published_exactly_once(uow_factory, outbox_writer, registry):
    service = UserRegistrationService(uow_factory, outbox_writer)
    envelope = await service.announce("u-1", "u1@example.com", "Ann")

    bus = FlakyBus(registry)
    relay = OutboxRelay(uow_factory, bus)
    assert await relay.relay_once() == 1
    assert await relay.relay_once() == 0

    (topic, event_id, key, headers), = bus.published
    assert topic == "test.UserRegistered"
    assert event_id == envelope.event_id
    assert key == envelope.correlation_id
    assert headers["x-event-type"] == "UserRegistered"

    async with uow_factory(readonly=True) as uow:
        (record,) = await uow.outbox.list_by_aggregate("User", "u-1")
    assert record.is_published
    assert record.body == registry.encode(envelope)


@pytest.mark.asyncio
async def test_registration_rejects_invalid_email(uow_factory, outbox_writer):
    with pytest.raises(DomainValidationException):
        await UserRegistrationService(uow_factory, outbox_writer).announce("u-1", "not-an-email")


@pytest.mark.asyncio
async def test_publish_failure_holds_back_later_records_of_same_aggregate(uow_factory, outbox_writer, registry):
    first = _order_envelope("o-1")
    second = _order_envelope("o-1")
    other = _order_envelope("o-2")
    async with uow_factory() as uow:
        await outbox_writer.enqueue(uow, first, aggregate_type="Order", aggregate_id="o-1")
        await outbox_writer.enqueue(uow, second, aggregate_type="Order", aggregate_id="o-1")
        await outbox_writer.enqueue(uow, other, aggregate_type="Order", aggregate_id="o-2")

    bus = FlakyBus(registry, fail_event_ids=[first.event_id], failures=1)
    relay = OutboxRelay(uow_factory, bus)

    with pytest.raises(OutboxPublishError):
        await relay.relay_once()
    assert [e for _, e, _, _ in bus.published] == [other.event_id]

    async with uow_factory(readonly=True) as uow:
        records = await uow.outbox.list_by_aggregate("Order", "o-1")
    assert [r.attempts for r in records] == [1, 0]
    assert "broker unavailable" in records[0].last_error
    assert all(r.claimed_until is None for r in records)

    # 下一轮按原顺序发布
    assert await relay.relay_once() == 2
    assert [e for _, e, _, _ in bus.published] == [other.event_id, first.event_id, second.event_id]


@pytest.mark.asyncio
async def test_claimed_records_are_skipped_until_lease_expires(uow_factory, outbox_writer, registry):
    async with uow_factory() as uow:
        await outbox_writer.enqueue(uow, _order_envelope("o-1"), aggregate_type="Order", aggregate_id="o-1")

    now = datetime.now(timezone.utc)
    async with uow_factory() as uow:
        claimed = await uow.outbox.claim_batch(10, now=now, lease_until=now + timedelta(seconds=30))
    assert len(claimed) == 1

    relay = OutboxRelay(uow_factory, FlakyBus(registry))
    assert await relay.relay_once(now=now + timedelta(seconds=1)) == 0
    assert await relay.relay_once(now=now + timedelta(seconds=31)) == 1


@pytest.mark.asyncio
async def test_run_retries_with_backoff_until_published(uow_factory, outbox_writer, registry):
    envelope = _order_envelope("o-1")
    async with uow_factory() as uow:
        await outbox_writer.enqueue(uow, envelope, aggregate_type="Order", aggregate_id="o-1")

    bus = FlakyBus(registry, fail_event_ids=[envelope.event_id], failures=3)

    class StopAfterPublish(OutboxRelay):
        async def relay_once(self, now=None):
            published = await super().relay_once(now)
            if published:
                self.stop()
            return published

    relay = StopAfterPublish(
        uow_factory, bus, poll_interval_s=0.01, backoff_base_s=0.001, backoff_cap_s=0.005
    )
    await relay.run()

    assert [e for _, e, _, _ in bus.published] == [envelope.event_id]
    async with uow_factory(readonly=True) as uow:
        (record,) = await uow.outbox.list_by_aggregate("Order", "o-1")
    assert record.is_published
    assert record.attempts == 3


@pytest.mark.asyncio
async def test_stuck_records_are_reported(uow_factory, outbox_writer, registry):
    async with uow_factory() as uow:
        await outbox_writer.enqueue(
            uow,
            new_envelope(UserRegistered(user_id="u-1", email="a@b.c")),
            aggregate_type="User",
            aggregate_id="u-1",
        )
    relay = OutboxRelay(uow_factory, FlakyBus(registry), stuck_threshold_s=60)

    assert await relay.stuck_records() == []
    stuck = await relay.stuck_records(now=datetime.now(timezone.utc) + timedelta(minutes=5))
    assert [r.event_type for r in stuck] == ["UserRegistered"]


def test_backoff_wait_is_capped_and_jittered():
    wait = wait_jittered_exponential(base=1.0, cap=60.0, jitter=0.2)

    class State:
        def __init__(self, n):
            self.attempt_number = n

    for n, expected in [(1, 1.0), (2, 2.0), (4, 8.0), (10, 60.0)]:
        value = wait(State(n))
        assert expected * 0.8 <= value <= expected * 1.2


@pytest.mark.asyncio
async def test_stuck_alert_fires_while_broker_is_down(uow_factory, outbox_writer, registry):
    envelope = _order_envelope("o-1")
    async with uow_factory() as uow:
        await outbox_writer.enqueue(uow, envelope, aggregate_type="Order", aggregate_id="o-1")

    bus = FlakyBus(registry, fail_event_ids=[envelope.event_id], failures=10**6)
    relay = OutboxRelay(
        uow_factory,
        bus,
        poll_interval_s=0.01,
        backoff_base_s=0.01,
        backoff_cap_s=0.02,
        stuck_threshold_s=0.2,
    )

    with capture_logs() as logs:
        task = asyncio.create_task(relay.run())
        try:
            for _ in range(300):
                if any(e["event"] == "outbox_record_stuck" for e in logs):
                    break
                await asyncio.sleep(0.01)
            alerted = [e for e in logs if e["event"] == "outbox_record_stuck"]
            assert not task.done()
        finally:
            relay.stop()
            await asyncio.wait_for(task, timeout=5)

    assert alerted and alerted[0]["event_id"] == envelope.event_id
    assert any(e["event"] == "outbox_relay_backoff" for e in logs)
    assert bus.published == []


@pytest.mark.asyncio
async def test_second_relay_keeps_aggregate_order_behind_foreign_lease(uow_factory, outbox_writer, registry):
    first = _order_envelope("o-1")
    second = _order_envelope("o-1")
    other = _order_envelope("o-2")
    async with uow_factory() as uow:
        await outbox_writer.enqueue(uow, first, aggregate_type="Order", aggregate_id="o-1")
        await outbox_writer.enqueue(uow, second, aggregate_type="Order", aggregate_id="o-1")
        await outbox_writer.enqueue(uow, other, aggregate_type="Order", aggregate_id="o-2")

    # 副本 A 领取了 o-1 的第一条后停住
    now = datetime.now(timezone.utc)
    async with uow_factory() as uow:
        (leased,) = await uow.outbox.claim_batch(1, now=now, lease_until=now + timedelta(seconds=30))
    assert leased.event_id == first.event_id

    bus = FlakyBus(registry)
    replica_b = OutboxRelay(uow_factory, bus)
    assert await replica_b.relay_once(now=now + timedelta(seconds=1)) == 1
    assert [e for _, e, _, _ in bus.published] == [other.event_id]

    async with uow_factory(readonly=True) as uow:
        records = await uow.outbox.list_by_aggregate("Order", "o-1")
    assert [r.is_published for r in records] == [False, False]
    assert records[1].claimed_until is None

    # 租约过期后按原顺序发布
    assert await replica_b.relay_once(now=now + timedelta(seconds=31)) == 2
    assert [e for _, e, _, _ in bus.published] == [other.event_id, first.event_id, second.event_id]
