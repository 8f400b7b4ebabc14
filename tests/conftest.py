"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

# 模块级引擎只用于默认配置，测试使用每个用例独立的 SQLite 文件库
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KAFKA__PROVIDER", "inmemory")

from decimal import Decimal
from typing import List, Tuple

import pytest
import pytest_asyncio

from application.events.registry import default_registry
from application.services.dead_letter_service import DeadLetterService
from application.services.outbox_writer import OutboxWriter
from domain.cart.entity import Cart, CartItem
from infrastructure.database import create_engine_from_url, create_session_factory, create_tables
from infrastructure.events.bus import create_event_bus
from infrastructure.external.messaging.config import ConsumerTuning, MessagingConfig, RetryConfig
from infrastructure.external.messaging.providers.inmemory import InMemoryBroker
from infrastructure.outbox.relay import OutboxRelay
from infrastructure.unit_of_work import make_uow_factory


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'commerce.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_factory(engine):
    return make_uow_factory(create_session_factory(engine))


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def outbox_writer(registry):
    return OutboxWriter(registry)


@pytest.fixture
def messaging_cfg():
    return MessagingConfig(
        provider="inmemory",
        consumer=ConsumerTuning(workers=1, handler_timeout_s=5.0, drain_timeout_s=2.0),
        retry=RetryConfig(max_attempts=5, delay_ms=5, max_delay_ms=40),
    )


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def dead_letters(uow_factory):
    return DeadLetterService(uow_factory)


@pytest_asyncio.fixture
async def bus(messaging_cfg, registry, dead_letters, broker):
    bus = create_event_bus(messaging_cfg, registry, dead_letters.record, broker=broker)
    await bus.start()
    yield bus
    await bus.close(1.0)


@pytest.fixture
def relay(uow_factory, bus):
    return OutboxRelay(
        uow_factory,
        bus,
        batch_size=50,
        poll_interval_s=0.01,
        backoff_base_s=0.01,
        backoff_cap_s=0.05,
    )


@pytest.fixture
def settle(relay, broker):
    """发布 outbox 并等待所有 consumer 处理完，直到不再产生新事件"""

    async def _settle(rounds: int = 20, timeout: float = 10.0) -> None:
        for _ in range(rounds):
            await broker.wait_idle(timeout=timeout)
            published = await relay.relay_once()
            if published == 0:
                await broker.wait_idle(timeout=timeout)
                return
        raise AssertionError("outbox did not settle")

    return _settle


async def seed_cart(uow_factory, user_id: str, items: List[Tuple[int, int, str]], cart_id: str = "") -> Cart:
    """items: (product_id, quantity, price)"""
    cart = Cart(
        user_id=user_id,
        cart_id=cart_id or f"cart-{user_id}",
        items=[
            CartItem(product_id=pid, product_name=f"product-{pid}", quantity=qty, price=Decimal(price))
            for pid, qty, price in items
        ],
    )
    async with uow_factory() as uow:
        return await uow.carts.save(cart)


@pytest.fixture
def cart_seeder(uow_factory):
    async def _seed(user_id: str, items: List[Tuple[int, int, str]], cart_id: str = "") -> Cart:
        return await seed_cart(uow_factory, user_id, items, cart_id)

    return _seed
