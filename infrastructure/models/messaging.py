"""
消息可靠性相关表：outbox、processed_events（幂等）、dead_letters（死信）
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Column, DateTime, Index, Integer, LargeBinary, String, Text, UniqueConstraint
)

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxModel(Base):
    """
    Outbox 记录

    与业务写入同事务插入；published_at 为空表示未发布。
    claimed_until 是 relay 的领取租约，过期后其他 relay 可重新领取。
    """
    __tablename__ = "outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    aggregate_type = Column(String(50), nullable=False, comment="聚合类型")
    aggregate_id = Column(String(64), nullable=False, comment="聚合ID")
    event_id = Column(String(64), nullable=False, unique=True, comment="事件ID")
    event_type = Column(String(100), nullable=False, comment="事件类型")
    correlation_id = Column(String(64), nullable=False, comment="链路ID")
    body = Column(LargeBinary, nullable=False, comment="序列化后的 envelope")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0, comment="发布失败次数")
    last_error = Column(Text, nullable=True)
    claimed_until = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_outbox_unpublished", "published_at", "id"),
        Index("ix_outbox_aggregate", "aggregate_type", "aggregate_id"),
    )

    def __repr__(self):
        return f"<OutboxModel(id={self.id}, event_type='{self.event_type}', published_at={self.published_at})>"


class ProcessedEventModel(Base):
    """幂等记录：(consumer_name, event_id) 唯一"""
    __tablename__ = "processed_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    consumer_name = Column(String(100), nullable=False)
    event_id = Column(String(64), nullable=False)
    processed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("consumer_name", "event_id", name="uq_processed_events_consumer_event"),
    )


class DeadLetterModel(Base):
    """死信：原始消息体按字节保存"""
    __tablename__ = "dead_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), nullable=False)
    consumer_name = Column(String(100), nullable=False)
    topic = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    body = Column(LargeBinary, nullable=False)
    headers = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=0)
    error_class = Column(String(200), nullable=True)
    error_message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="dead", index=True, comment="dead/replayed/discarded")
    dead_lettered_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    replayed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("consumer_name", "event_id", name="uq_dead_letters_consumer_event"),
    )
