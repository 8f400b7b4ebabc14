import asyncio

import pytest
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from worker_main import _purge_periodically


class FlakyRetention:
    """第一次清理时数据库不可用，之后正常"""

    def __init__(self, stopping, stop_after=3):
        self.stopping = stopping
        self.stop_after = stop_after
        self.calls = 0

    async def purge(self, now=None):
        self.calls += 1
        if self.calls == 1:
            raise OperationalError("DELETE FROM processed_events", {}, Exception("connection refused"))
        if self.calls >= self.stop_after:
            self.stopping.set()
        return 0


@pytest.mark.asyncio
async def test_purge_loop_survives_database_error():
    stopping = asyncio.Event()
    retention = FlakyRetention(stopping)

    with capture_logs() as logs:
        await asyncio.wait_for(_purge_periodically(retention, stopping, interval_s=0.01), timeout=5)

    assert retention.calls == 3
    (failure,) = [e for e in logs if e["event"] == "processed_events_purge_failed"]
    assert failure["log_level"] == "warning"
    assert failure["error_class"] == "OperationalError"
