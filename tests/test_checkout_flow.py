from decimal import Decimal

import pytest

from application.consumers import (
    EmailNotificationConsumer,
    OrderPlacementConsumer,
    RewardAccrualConsumer,
    RewardLedgerAuditConsumer,
    RewardOrderTrackingConsumer,
)
from application.events.contracts import OrderPlaced
from application.services.checkout_service import CheckoutService
from application.services.dead_letter_service import DeadLetterService
from application.services.order_service import OrderService
from domain.common.exceptions import DeadLetterStateConflictException
from domain.messaging.entity import DeadLetterStatus


class RecordingSender:
    def __init__(self):
        self.sent = []

    async def send_email(self, message):
        self.sent.append(message)


class FlakyOrderPlacement(OrderPlacementConsumer):
    def __init__(self, *args, failures: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures
        self.calls = 0

    async def handle(self, uow, envelope):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure #{self.calls}")
        await super().handle(uow, envelope)


async def _start(bus, consumer):
    sub = bus.subscribe(consumer.event_types, consumer.name, consumer)
    await sub.start()
    return sub


def _decoded(bus, broker, event_type):
    return [bus.registry.decode(m.value) for m in broker.messages(bus.topic_for(event_type))]


@pytest.mark.asyncio
async def test_checkout_places_order_with_cart_snapshot(
    bus, broker, uow_factory, outbox_writer, settle, cart_seeder
):
    await _start(bus, OrderPlacementConsumer(uow_factory, outbox_writer))
    await cart_seeder("u-1", [(1, 2, "10.00"), (2, 1, "5.00")])

    result = await CheckoutService(uow_factory, outbox_writer).checkout(
        "u-1", user_email="u1@example.com", user_name="Ann"
    )
    assert result.total_amount == Decimal("25.00")
    await settle()

    (placed,) = _decoded(bus, broker, OrderPlaced.event_type)
    assert placed.correlation_id == result.correlation_id
    assert placed.causation_id == result.event_id
    assert placed.payload.total_amount == Decimal("25.00")
    assert [(i.product_id, i.quantity, i.price, i.total) for i in placed.payload.items] == [
        (1, 2, Decimal("10.00"), Decimal("20.00")),
        (2, 1, Decimal("5.00"), Decimal("5.00")),
    ]

    (order,) = await OrderService(uow_factory, outbox_writer).list_orders("u-1")
    assert order.id == placed.payload.order_id
    assert order.status == "Pending"
    assert order.correlation_id == result.correlation_id
    assert len(order.items) == 2

    async with uow_factory(readonly=True) as uow:
        cart = await uow.carts.get_by_user("u-1")
    assert cart.is_empty()


@pytest.mark.asyncio
async def test_full_saga_from_checkout_to_reward_points(
    bus, broker, uow_factory, outbox_writer, settle, cart_seeder
):
    sender = RecordingSender()
    for consumer in (
        OrderPlacementConsumer(uow_factory, outbox_writer),
        RewardOrderTrackingConsumer(uow_factory, outbox_writer),
        RewardAccrualConsumer(uow_factory, outbox_writer),
        RewardLedgerAuditConsumer(uow_factory, outbox_writer),
        EmailNotificationConsumer(uow_factory, outbox_writer, sender),
    ):
        await _start(bus, consumer)
    await cart_seeder("u-1", [(1, 2, "10.00"), (2, 1, "5.00")])

    checkout = await CheckoutService(uow_factory, outbox_writer).checkout("u-1", user_email="u1@example.com")
    await settle()

    orders = OrderService(uow_factory, outbox_writer)
    (order,) = await orders.list_orders("u-1")
    paid = await orders.confirm_payment(order.id, "pay-1")
    assert paid.status == "Processing"
    await settle()

    async with uow_factory(readonly=True) as uow:
        account = await uow.rewards.get_by_user("u-1")
    assert account.points == 25
    assert account.ledger[0].order_id == order.id

    assert [m.to for m in sender.sent] == ["u1@example.com"]

    chain = [
        env
        for t in ("CartCheckedOut", "OrderPlaced", "PaymentCompleted", "RewardPointsEarned")
        for env in _decoded(bus, broker, t)
    ]
    assert len(chain) == 4
    assert {env.correlation_id for env in chain} == {checkout.correlation_id}

    async with uow_factory(readonly=True) as uow:
        assert await uow.outbox.count_unpublished() == 0
        assert await uow.dead_letters.list() == []


@pytest.mark.asyncio
async def test_handler_recovers_within_attempt_budget(
    bus, uow_factory, outbox_writer, settle, cart_seeder
):
    consumer = FlakyOrderPlacement(uow_factory, outbox_writer, failures=4)
    await _start(bus, consumer)
    await cart_seeder("u-1", [(1, 1, "9.99")])

    await CheckoutService(uow_factory, outbox_writer).checkout("u-1")
    await settle()

    assert consumer.calls == 5
    assert len(await OrderService(uow_factory, outbox_writer).list_orders("u-1")) == 1
    async with uow_factory(readonly=True) as uow:
        assert await uow.dead_letters.list() == []


@pytest.mark.asyncio
async def test_exhausted_message_is_dead_lettered_and_replayed_once(
    bus, broker, uow_factory, outbox_writer, settle, cart_seeder
):
    consumer = FlakyOrderPlacement(uow_factory, outbox_writer, failures=6)
    await _start(bus, consumer)
    await cart_seeder("u-1", [(1, 1, "9.99")])

    checkout = await CheckoutService(uow_factory, outbox_writer).checkout("u-1")
    await settle()

    assert consumer.calls == 5
    orders = OrderService(uow_factory, outbox_writer)
    assert await orders.list_orders("u-1") == []

    service = DeadLetterService(uow_factory, bus)
    (dl,) = await service.list()
    assert dl.event_id == checkout.event_id
    assert dl.consumer_name == "order-placement"
    assert dl.attempts == 5
    (original,) = broker.messages(bus.topic_for("CartCheckedOut"))
    stored = await _stored_body(uow_factory, dl.event_id)
    assert stored == original.value

    # 修复后重放
    consumer.failures = 0
    replayed = await service.replay(dl.event_id, "order-placement")
    assert replayed.status == DeadLetterStatus.REPLAYED.value
    await settle()
    assert len(await orders.list_orders("u-1")) == 1

    # 再次投递同一 event_id 不会产生第二个订单
    await bus.publish_bytes(bus.topic_for("CartCheckedOut"), original.value)
    await settle()
    assert len(await orders.list_orders("u-1")) == 1

    with pytest.raises(DeadLetterStateConflictException):
        await service.replay(dl.event_id, "order-placement")


async def _stored_body(uow_factory, event_id):
    async with uow_factory(readonly=True) as uow:
        dl = await uow.dead_letters.get(event_id, "order-placement")
    return dl.body
