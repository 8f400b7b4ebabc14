"""幂等记录保留期清理"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import UnitOfWorkFactory


logger = get_logger(__name__)


class ProcessedEventRetention:
    def __init__(self, uow_factory: UnitOfWorkFactory, *, retention_days: int) -> None:
        if retention_days <= 0:
            raise ValueError("retention_days must be positive")
        self._uow_factory = uow_factory
        self.retention = timedelta(days=retention_days)

    async def purge(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        async with self._uow_factory() as uow:
            removed = await uow.processed_events.purge_older_than(cutoff)
        logger.info("processed_events_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed
