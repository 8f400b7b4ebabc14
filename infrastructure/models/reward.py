"""
积分数据库模型：账户、流水、已知订单
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RewardAccountModel(Base):
    __tablename__ = "reward_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, unique=True, comment="用户ID")
    points = Column(Integer, nullable=False, default=0, comment="积分余额")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    ledger = relationship(
        "RewardLedgerModel",
        back_populates="account",
        lazy="selectin",
        order_by="RewardLedgerModel.id",
    )

    def __repr__(self):
        return f"<RewardAccountModel(user_id='{self.user_id}', points={self.points})>"


class RewardLedgerModel(Base):
    """积分流水（只追加）"""
    __tablename__ = "reward_ledger"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer,
        ForeignKey("reward_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(String(20), nullable=False, comment="Earned/Redeemed")
    points = Column(Integer, nullable=False, comment="带符号积分变化")
    description = Column(Text, nullable=False, default="")
    order_id = Column(String(36), nullable=True, index=True, comment="关联订单")
    source_event_id = Column(String(64), nullable=True, comment="触发的事件ID")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    account = relationship("RewardAccountModel", back_populates="ledger")

    __table_args__ = (
        Index("ix_reward_ledger_account_type", "account_id", "type"),
    )


class RewardTrackedOrderModel(Base):
    """积分服务已知的订单（由 OrderPlaced 写入）"""
    __tablename__ = "reward_tracked_orders"

    order_id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
