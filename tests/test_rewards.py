import asyncio
from decimal import Decimal

import pytest
from structlog.testing import capture_logs

from application.consumers import (
    RewardAccrualConsumer,
    RewardLedgerAuditConsumer,
    RewardOrderTrackingConsumer,
)
from application.events.contracts import OrderPlaced, PaymentCompleted, PointsRedeemed, RewardPointsEarned
from application.events.envelope import new_envelope
from application.events.errors import DependencyNotReadyError, PermanentHandlerError
from application.services.dead_letter_service import DeadLetterService
from application.services.reward_service import RewardService
from domain.common.exceptions import InsufficientPointsException, RewardAccountNotFoundException
from domain.reward.entity import RewardAccount, points_for_purchase
from infrastructure.external.messaging.config import ConsumerTuning, MessagingConfig, RetryConfig


@pytest.fixture
def messaging_cfg():
    # 足够长的重投窗口，让先到的 PaymentCompleted 能等到 OrderPlaced
    return MessagingConfig(
        provider="inmemory",
        consumer=ConsumerTuning(workers=1, handler_timeout_s=5.0, drain_timeout_s=2.0),
        retry=RetryConfig(max_attempts=50, delay_ms=5, max_delay_ms=20),
    )


def _placed(order_id="o-1", user_id="u-1"):
    return new_envelope(
        OrderPlaced(order_id=order_id, user_id=user_id, total_amount=Decimal("25.00"), items=[]),
        correlation_id="corr-1",
    )


def _paid(order_id="o-1", user_id="u-1", amount="25.00", ok=True):
    return new_envelope(
        PaymentCompleted(
            order_id=order_id,
            payment_id="pay-1",
            user_id=user_id,
            amount=Decimal(amount),
            is_successful=ok,
        ),
        correlation_id="corr-1",
    )


async def _seed_points(uow_factory, user_id, points):
    async with uow_factory() as uow:
        account = RewardAccount(user_id=user_id)
        account.earn(points, description="seed")
        await uow.rewards.save(account)


@pytest.mark.parametrize(
    "amount,rate,expected",
    [("25.00", 1, 25), ("25.99", 1, 25), ("0.99", 1, 0), ("10.50", 2, 21), ("-3", 1, 0)],
)
def test_points_for_purchase_floors(amount, rate, expected):
    assert points_for_purchase(Decimal(amount), rate) == expected


@pytest.mark.asyncio
async def test_payment_consumed_twice_earns_once(uow_factory, outbox_writer):
    await RewardOrderTrackingConsumer(uow_factory, outbox_writer)(_placed())
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer)
    payment = _paid()

    await accrual(payment)
    await accrual(payment)

    async with uow_factory(readonly=True) as uow:
        account = await uow.rewards.get_by_user("u-1")
    assert [(e.type.value, e.points) for e in account.ledger] == [("Earned", 25)]
    assert account.ledger[0].source_event_id == payment.event_id


@pytest.mark.asyncio
async def test_unsuccessful_payment_earns_nothing(uow_factory, outbox_writer):
    await RewardOrderTrackingConsumer(uow_factory, outbox_writer)(_placed())
    await RewardAccrualConsumer(uow_factory, outbox_writer)(_paid(ok=False))

    async with uow_factory(readonly=True) as uow:
        assert await uow.rewards.get_by_user("u-1") is None
        assert await uow.outbox.count_unpublished() == 0


@pytest.mark.asyncio
async def test_defer_policy_waits_for_order_without_claiming(uow_factory, outbox_writer):
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer, ordering_policy="defer")
    payment = _paid()

    with pytest.raises(DependencyNotReadyError):
        await accrual(payment)
    async with uow_factory(readonly=True) as uow:
        assert not await uow.processed_events.exists("reward-accrual", payment.event_id)

    await RewardOrderTrackingConsumer(uow_factory, outbox_writer)(_placed())
    await accrual(payment)
    async with uow_factory(readonly=True) as uow:
        assert (await uow.rewards.get_by_user("u-1")).points == 25


@pytest.mark.asyncio
async def test_reject_policy_fails_permanently(uow_factory, outbox_writer):
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer, ordering_policy="reject")
    with pytest.raises(PermanentHandlerError):
        await accrual(_paid())


@pytest.mark.asyncio
async def test_out_of_order_delivery_is_deferred_over_the_bus(bus, uow_factory, outbox_writer, broker, dead_letters):
    for consumer in (
        RewardAccrualConsumer(uow_factory, outbox_writer, ordering_policy="defer"),
        RewardOrderTrackingConsumer(uow_factory, outbox_writer),
    ):
        await bus.subscribe(consumer.event_types, consumer.name, consumer).start()

    await bus.publish(_paid())
    await asyncio.sleep(0.03)
    await bus.publish(_placed())
    await broker.wait_idle(timeout=10)

    async with uow_factory(readonly=True) as uow:
        assert (await uow.rewards.get_by_user("u-1")).points == 25
    assert await dead_letters.list() == []


@pytest.mark.asyncio
async def test_out_of_order_delivery_is_dead_lettered_under_reject(bus, uow_factory, outbox_writer, broker):
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer, ordering_policy="reject")
    await bus.subscribe(accrual.event_types, accrual.name, accrual).start()
    tracking = RewardOrderTrackingConsumer(uow_factory, outbox_writer)

    payment = _paid()
    await bus.publish(payment)
    await broker.wait_idle()

    service = DeadLetterService(uow_factory, bus)
    (dl,) = await service.list(consumer_name="reward-accrual")
    assert dl.event_id == payment.event_id
    assert dl.attempts == 1
    assert dl.error_class == "PermanentHandlerError"

    # 运维在订单到达后重放
    await tracking(_placed())
    await service.replay(payment.event_id, "reward-accrual")
    await broker.wait_idle()
    async with uow_factory(readonly=True) as uow:
        assert (await uow.rewards.get_by_user("u-1")).points == 25


@pytest.mark.asyncio
async def test_redeem_more_than_balance_fails_without_side_effects(uow_factory, outbox_writer):
    await _seed_points(uow_factory, "u-1", 300)
    service = RewardService(uow_factory, outbox_writer)

    with pytest.raises(InsufficientPointsException) as exc_info:
        await service.redeem("u-1", 500)
    assert exc_info.value.details == {"user_id": "u-1", "requested": 500, "available": 300}

    account = await service.get_account("u-1")
    assert account.points == 300
    async with uow_factory(readonly=True) as uow:
        assert await uow.outbox.list_by_aggregate("RewardAccount", "u-1") == []


@pytest.mark.asyncio
async def test_redeem_emits_points_redeemed(uow_factory, outbox_writer, registry):
    await _seed_points(uow_factory, "u-1", 300)
    service = RewardService(uow_factory, outbox_writer)

    result = await service.redeem("u-1", 200, order_id="o-9", correlation_id="corr-9")
    assert result.balance == 100
    assert result.discount_amount == Decimal("2.00")

    account = await service.get_account("u-1")
    assert [(e.type, e.points) for e in account.ledger] == [("Earned", 300), ("Redeemed", -200)]

    async with uow_factory(readonly=True) as uow:
        (record,) = await uow.outbox.list_by_aggregate("RewardAccount", "u-1")
    envelope = registry.decode(record.body)
    assert envelope.event_id == result.event_id
    assert envelope.correlation_id == "corr-9"
    assert isinstance(envelope.payload, PointsRedeemed)
    assert envelope.payload.points_redeemed == 200


@pytest.mark.asyncio
async def test_redeem_without_account(uow_factory, outbox_writer):
    service = RewardService(uow_factory, outbox_writer)
    with pytest.raises(InsufficientPointsException):
        await service.redeem("ghost", 1)
    with pytest.raises(RewardAccountNotFoundException):
        await service.get_account("ghost")


@pytest.mark.asyncio
async def test_ledger_audit_reports_mismatch(uow_factory, outbox_writer):
    audit = RewardLedgerAuditConsumer(uow_factory, outbox_writer)
    earned = new_envelope(
        RewardPointsEarned(user_id="u-1", points_earned=25, purchase_amount=Decimal("25.00"), order_id="o-1")
    )

    with capture_logs() as logs:
        await audit(earned)
    assert any(e["event"] == "reward_ledger_mismatch" for e in logs)

    await RewardOrderTrackingConsumer(uow_factory, outbox_writer)(_placed())
    await RewardAccrualConsumer(uow_factory, outbox_writer)(_paid())
    again = new_envelope(
        RewardPointsEarned(user_id="u-1", points_earned=25, purchase_amount=Decimal("25.00"), order_id="o-1")
    )
    with capture_logs() as logs:
        await audit(again)
    assert any(e["event"] == "reward_ledger_verified" for e in logs)
