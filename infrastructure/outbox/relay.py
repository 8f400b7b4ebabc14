"""
Outbox relay：把已提交的 outbox 记录发布到事件总线。

每一轮：
    领取一批未发布记录（创建顺序 + 租约）-> 逐条发布 -> broker 确认后标记已发布

同一聚合的记录保持顺序：某条发布失败时，本批次中该聚合后续的记录
不在这一轮发布，只释放租约等待下一轮。发布失败由 tenacity 按带抖动的
指数退避无限重试；同一记录被发布两次是无害的，consumer 按 event_id 去重。
积压检查在独立任务中按 stuck_threshold_s 周期运行，broker 不可用期间也会告警。
"""
from __future__ import annotations

import asyncio
import random
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_when_event_set
from tenacity.wait import wait_base

from application.ports.event_bus import EventBusPort
from core.logging_config import get_logger
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.messaging.entity import OutboxRecord
from infrastructure.external.messaging.headers import H_CORR_ID, H_EVENT_TYPE


logger = get_logger(__name__)


class OutboxPublishError(Exception):
    """本轮至少有一条记录发布失败"""

    def __init__(self, failed: int, published: int) -> None:
        self.failed = failed
        self.published = published
        super().__init__(f"{failed} outbox record(s) failed to publish")


class wait_jittered_exponential(wait_base):
    """min(cap, base * 2^(n-1))，再叠加 ±jitter 比例的随机抖动"""

    def __init__(self, base: float = 1.0, cap: float = 60.0, jitter: float = 0.2) -> None:
        self.base = base
        self.cap = cap
        self.jitter = jitter

    def __call__(self, retry_state: RetryCallState) -> float:
        exp = max(retry_state.attempt_number - 1, 0)
        delay = min(self.cap, self.base * (2 ** exp))
        spread = delay * self.jitter
        return max(0.0, delay + random.uniform(-spread, spread))


class OutboxRelay:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        bus: EventBusPort,
        *,
        batch_size: int = 100,
        poll_interval_s: float = 1.0,
        claim_lease_s: float = 30.0,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 60.0,
        backoff_jitter: float = 0.2,
        stuck_threshold_s: float = 300.0,
    ) -> None:
        self._uow_factory = uow_factory
        self._bus = bus
        self.batch_size = batch_size
        self.poll_interval_s = poll_interval_s
        self.claim_lease_s = claim_lease_s
        self.stuck_threshold_s = stuck_threshold_s
        self._wait = wait_jittered_exponential(backoff_base_s, backoff_cap_s, backoff_jitter)
        self._stopping = asyncio.Event()

    async def relay_once(self, now: Optional[datetime] = None) -> int:
        """执行一轮发布，返回成功发布的条数；有失败时抛出 OutboxPublishError"""
        now = now or datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            records = await uow.outbox.claim_batch(
                self.batch_size,
                now=now,
                lease_until=now + timedelta(seconds=self.claim_lease_s),
            )
        if not records:
            return 0

        published = 0
        failed = 0
        blocked: Set[Tuple[str, str]] = set()
        held_back: List[int] = []
        for record in records:
            aggregate = (record.aggregate_type, record.aggregate_id)
            if aggregate in blocked:
                held_back.append(record.id)
                continue
            try:
                await self._publish(record)
            except Exception as exc:
                failed += 1
                blocked.add(aggregate)
                logger.warning(
                    "outbox_publish_failed",
                    outbox_id=record.id,
                    event_id=record.event_id,
                    event_type=record.event_type,
                    attempts=record.attempts + 1,
                    error=str(exc),
                    error_class=type(exc).__name__,
                )
                async with self._uow_factory() as uow:
                    await uow.outbox.mark_failed(record.id, f"{type(exc).__name__}: {exc}")
                continue
            async with self._uow_factory() as uow:
                updated = await uow.outbox.mark_published(record.id, datetime.now(timezone.utc))
            if updated:
                published += 1
                logger.debug("outbox_record_published", outbox_id=record.id, event_id=record.event_id)
            else:
                logger.info("outbox_record_already_published", outbox_id=record.id, event_id=record.event_id)

        if held_back:
            async with self._uow_factory() as uow:
                await uow.outbox.release(held_back)
        if failed:
            raise OutboxPublishError(failed, published)
        return published

    async def _publish(self, record: OutboxRecord) -> None:
        await self._bus.publish_bytes(
            self._bus.topic_for(record.event_type),
            record.body,
            key=record.correlation_id,
            headers={H_CORR_ID: record.correlation_id, H_EVENT_TYPE: record.event_type},
        )

    async def stuck_records(self, now: Optional[datetime] = None) -> List[OutboxRecord]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.stuck_threshold_s)
        async with self._uow_factory(readonly=True) as uow:
            records = await uow.outbox.list_unpublished_before(cutoff)
        for r in records:
            logger.error(
                "outbox_record_stuck",
                outbox_id=r.id,
                event_id=r.event_id,
                event_type=r.event_type,
                aggregate_type=r.aggregate_type,
                aggregate_id=r.aggregate_id,
                attempts=r.attempts,
                last_error=r.last_error,
            )
        return records

    async def _sleep(self, seconds: float) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "outbox_relay_backoff",
            attempt=retry_state.attempt_number,
            sleep_s=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _relay_with_backoff(self) -> int:
        try:
            async for attempt in AsyncRetrying(
                wait=self._wait,
                retry=retry_if_exception_type((OutboxPublishError, SQLAlchemyError)),
                stop=stop_when_event_set(self._stopping),
                sleep=self._sleep,
                before_sleep=self._before_sleep,
                reraise=True,
            ):
                with attempt:
                    return await self.relay_once()
        except (OutboxPublishError, SQLAlchemyError) as exc:
            # 只有停止时才会走到这里
            logger.info("outbox_relay_interrupted", error=str(exc))
        return 0

    async def _watch_stuck(self) -> None:
        """每隔 stuck_threshold_s 检查一次积压记录；与发布循环并行，broker 故障期间照常告警"""
        while not self._stopping.is_set():
            await self._sleep(self.stuck_threshold_s)
            if self._stopping.is_set():
                break
            try:
                await self.stuck_records()
            except SQLAlchemyError as exc:
                logger.warning("outbox_stuck_check_failed", error=str(exc))

    async def run(self) -> None:
        """循环发布直到 stop()；空闲时按 poll_interval_s 轮询"""
        self._stopping.clear()
        logger.info("outbox_relay_started", batch_size=self.batch_size)
        watcher = asyncio.create_task(self._watch_stuck(), name="outbox-stuck-watch")
        try:
            while not self._stopping.is_set():
                published = await self._relay_with_backoff()
                if published == 0:
                    await self._sleep(self.poll_interval_s)
        finally:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher
        logger.info("outbox_relay_stopped")

    def stop(self) -> None:
        self._stopping.set()
