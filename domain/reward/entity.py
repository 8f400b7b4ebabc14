"""
积分领域实体 - 积分账户与流水
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException, InsufficientPointsException


class LedgerEntryType(str, Enum):
    EARNED = "Earned"
    REDEEMED = "Redeemed"


@dataclass
class LedgerEntry:
    type: LedgerEntryType
    points: int  # 带符号：Earned 为正，Redeemed 为负
    description: str
    order_id: Optional[str] = None
    source_event_id: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def points_for_purchase(amount: Decimal, points_per_unit: int) -> int:
    """每个完整货币单位累积 points_per_unit 积分，向下取整。"""
    if amount <= 0:
        return 0
    return int((amount * points_per_unit).to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class RewardAccount:
    """
    积分账户聚合根

    业务规则：
    1. 余额不能为负
    2. 每次余额变化都追加一条流水
    """

    user_id: str
    points: int = 0
    ledger: List[LedgerEntry] = field(default_factory=list)
    id: Optional[int] = None
    updated_at: Optional[datetime] = None

    def earn(
        self,
        points: int,
        *,
        order_id: Optional[str] = None,
        description: str = "",
        source_event_id: Optional[str] = None,
    ) -> LedgerEntry:
        if points <= 0:
            raise DomainValidationException(f"Points to earn must be positive: {points}", field="points")
        self.points += points
        entry = LedgerEntry(
            type=LedgerEntryType.EARNED,
            points=points,
            order_id=order_id,
            description=description or f"Earned {points} points",
            source_event_id=source_event_id,
        )
        self.ledger.append(entry)
        self.updated_at = entry.created_at
        return entry

    def redeem(self, points: int, *, order_id: Optional[str] = None) -> LedgerEntry:
        if points <= 0:
            raise DomainValidationException(f"Points to redeem must be positive: {points}", field="points")
        if self.points < points:
            raise InsufficientPointsException(self.user_id, requested=points, available=self.points)
        self.points -= points
        entry = LedgerEntry(
            type=LedgerEntryType.REDEEMED,
            points=-points,
            order_id=order_id,
            description=f"Redeemed {points} points",
        )
        self.ledger.append(entry)
        self.updated_at = entry.created_at
        return entry

    def has_entry(self, type: LedgerEntryType, *, order_id: Optional[str], points: int) -> bool:
        return any(
            e.type == type and e.order_id == order_id and abs(e.points) == points
            for e in self.ledger
        )
