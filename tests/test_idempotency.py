import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.consumers import RewardAccrualConsumer, RewardOrderTrackingConsumer
from application.events.contracts import OrderPlaced, PaymentCompleted
from application.events.envelope import new_envelope
from application.services.retention_service import ProcessedEventRetention
from domain.messaging.entity import ClaimResult
from domain.reward.entity import LedgerEntryType


def _order_placed(order_id="o-1", user_id="u-1"):
    return new_envelope(
        OrderPlaced(order_id=order_id, user_id=user_id, total_amount=Decimal("25.00"), items=[]),
        correlation_id="corr-1",
    )


def _payment(order_id="o-1", user_id="u-1", amount="25.00", ok=True):
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


@pytest.mark.asyncio
async def test_try_claim_is_unique_per_consumer(uow_factory):
    async with uow_factory() as uow:
        assert await uow.processed_events.try_claim("a", "e-1") is ClaimResult.CLAIMED
    async with uow_factory() as uow:
        assert await uow.processed_events.try_claim("a", "e-1") is ClaimResult.ALREADY_PROCESSED
        # 冲突只回滚 SAVEPOINT，同一事务内仍可继续写入
        assert await uow.processed_events.try_claim("b", "e-1") is ClaimResult.CLAIMED
    async with uow_factory(readonly=True) as uow:
        assert await uow.processed_events.exists("b", "e-1")


@pytest.mark.asyncio
async def test_claim_rolls_back_with_failed_business_write(uow_factory):
    with pytest.raises(RuntimeError):
        async with uow_factory() as uow:
            await uow.processed_events.try_claim("a", "e-1")
            raise RuntimeError("business write failed")

    async with uow_factory(readonly=True) as uow:
        assert not await uow.processed_events.exists("a", "e-1")


@pytest.mark.asyncio
async def test_redelivery_has_at_most_once_effect(uow_factory, outbox_writer):
    tracking = RewardOrderTrackingConsumer(uow_factory, outbox_writer)
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer)
    await tracking(_order_placed())

    payment = _payment()
    for _ in range(4):
        await accrual(payment)

    async with uow_factory(readonly=True) as uow:
        account = await uow.rewards.get_by_user("u-1")
        earned = await uow.outbox.list_by_aggregate("RewardAccount", "u-1")
    assert account.points == 25
    assert [e.type for e in account.ledger] == [LedgerEntryType.EARNED]
    assert len(earned) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_collapse_to_one_effect(uow_factory, outbox_writer):
    tracking = RewardOrderTrackingConsumer(uow_factory, outbox_writer)
    accrual = RewardAccrualConsumer(uow_factory, outbox_writer)
    await tracking(_order_placed())

    payment = _payment()
    await asyncio.gather(*(accrual(payment) for _ in range(3)))

    async with uow_factory(readonly=True) as uow:
        account = await uow.rewards.get_by_user("u-1")
    assert account.points == 25
    assert len(account.ledger) == 1


@pytest.mark.asyncio
async def test_retention_purges_only_old_claims(uow_factory):
    async with uow_factory() as uow:
        await uow.processed_events.try_claim("a", "old")
    retention = ProcessedEventRetention(uow_factory, retention_days=14)

    assert await retention.purge() == 0
    assert await retention.purge(now=datetime.now(timezone.utc) + timedelta(days=15)) == 1
    async with uow_factory(readonly=True) as uow:
        assert not await uow.processed_events.exists("a", "old")
