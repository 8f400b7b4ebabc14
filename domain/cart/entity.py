"""
购物车领域实体（仅结账所需的读取/清空语义）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass
class CartItem:
    product_id: int
    product_name: str
    quantity: int
    price: Decimal

    @property
    def total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class Cart:
    user_id: str
    cart_id: str
    items: List[CartItem] = field(default_factory=list)
    coupon_code: Optional[str] = None
    discount: Decimal = field(default_factory=lambda: Decimal("0"))

    @property
    def subtotal(self) -> Decimal:
        return sum((i.total for i in self.items), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.subtotal - self.discount

    def is_empty(self) -> bool:
        return not self.items

    def clear(self) -> None:
        self.items.clear()
        self.coupon_code = None
        self.discount = Decimal("0")
