"""
订单领域实体 - 订单聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException, OrderStateConflictException


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class OrderItem:
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Quantity must be positive: {self.quantity}", field="quantity"
            )
        if self.price < 0:
            raise DomainValidationException(f"Price must not be negative: {self.price}", field="price")


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 订单由购物车快照创建，初始状态为 Pending
    2. 只有 Pending 订单可以登记支付，登记后进入 Processing
    3. 金额不能为负
    """

    id: str
    user_id: str
    total_amount: Decimal
    items: List[OrderItem] = field(default_factory=list)
    user_email: str = ""
    user_name: str = ""
    coupon_code: Optional[str] = None
    discount: Decimal = field(default_factory=lambda: Decimal("0"))
    status: OrderStatus = OrderStatus.PENDING
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    correlation_id: Optional[str] = None
    source_event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total_amount < 0:
            raise DomainValidationException(
                f"Order total must not be negative: {self.total_amount}", field="total_amount"
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)

    @property
    def items_total(self) -> Decimal:
        return sum((i.total for i in self.items), Decimal("0"))

    def record_payment(self, payment_id: str, paid_at: Optional[datetime] = None) -> None:
        """登记支付并进入 Processing"""
        if self.status != OrderStatus.PENDING:
            raise OrderStateConflictException(self.id, self.status.value, OrderStatus.PROCESSING.value)
        now = datetime.now(timezone.utc)
        self.payment_id = payment_id
        self.paid_at = _ensure_utc(paid_at) or now
        self.status = OrderStatus.PROCESSING
        self.updated_at = now

    def change_status(self, status: OrderStatus) -> None:
        if self.status == OrderStatus.CANCELLED:
            raise OrderStateConflictException(self.id, self.status.value, status.value)
        self.status = status
        self.updated_at = datetime.now(timezone.utc)
