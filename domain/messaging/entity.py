"""
消息可靠性相关的持久化实体：outbox 记录、幂等记录、死信记录。

这些实体只描述存储形态，不关心具体 broker 与序列化格式；
body 始终是已经序列化好的 envelope 字节。
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaimResult(enum.Enum):
    CLAIMED = "claimed"
    ALREADY_PROCESSED = "already_processed"


@dataclass
class OutboxRecord:
    aggregate_type: str
    aggregate_id: str
    event_id: str
    event_type: str
    correlation_id: str
    body: bytes
    id: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    published_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = None
    claimed_until: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.published_at is not None


@dataclass
class ProcessedEvent:
    consumer_name: str
    event_id: str
    processed_at: datetime = field(default_factory=_utcnow)


class DeadLetterStatus(str, enum.Enum):
    DEAD = "dead"
    REPLAYED = "replayed"
    DISCARDED = "discarded"


@dataclass
class DeadLetter:
    event_id: str
    consumer_name: str
    topic: str
    body: bytes
    attempts: int
    event_type: Optional[str] = None
    correlation_id: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    status: DeadLetterStatus = DeadLetterStatus.DEAD
    dead_lettered_at: datetime = field(default_factory=_utcnow)
    replayed_at: Optional[datetime] = None
    id: Optional[int] = None
