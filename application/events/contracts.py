"""
Domain event payload contracts shared by every service.

One model per business fact. Models ignore unknown fields so that a producer
can add fields without breaking older consumers; decimals travel as strings.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventPayload(BaseModel):
    """Base class for all payload variants; ``event_type`` is the wire tag."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    event_type: ClassVar[str] = ""


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    product_id: int
    product_name: str = ""
    quantity: int = Field(gt=0)
    price: Decimal
    total: Decimal


class CartCheckedOut(EventPayload):
    event_type: ClassVar[str] = "CartCheckedOut"

    user_id: str
    cart_id: str
    items: List[LineItem]
    total_amount: Decimal
    coupon_code: Optional[str] = None
    reward_points_used: Optional[int] = None
    user_email: str = ""
    user_name: str = ""
    checked_out_at: datetime = Field(default_factory=_utcnow)


class OrderPlaced(EventPayload):
    event_type: ClassVar[str] = "OrderPlaced"

    order_id: str
    user_id: str
    user_email: str = ""
    user_name: str = ""
    total_amount: Decimal
    items: List[LineItem]
    created_at: datetime = Field(default_factory=_utcnow)


class PaymentCompleted(EventPayload):
    event_type: ClassVar[str] = "PaymentCompleted"

    order_id: str
    payment_id: str
    user_id: str
    amount: Decimal
    is_successful: bool
    completed_at: datetime = Field(default_factory=_utcnow)


class RewardPointsEarned(EventPayload):
    event_type: ClassVar[str] = "RewardPointsEarned"

    user_id: str
    points_earned: int
    purchase_amount: Decimal
    order_id: Optional[str] = None
    earned_at: datetime = Field(default_factory=_utcnow)


class PointsRedeemed(EventPayload):
    event_type: ClassVar[str] = "PointsRedeemed"

    user_id: str
    points_redeemed: int
    discount_amount: Decimal
    order_id: Optional[str] = None
    redeemed_at: datetime = Field(default_factory=_utcnow)


class InventoryUpdated(EventPayload):
    event_type: ClassVar[str] = "InventoryUpdated"

    product_id: int
    product_name: str = ""
    quantity_changed: int
    new_quantity: int
    is_restock: bool = False
    updated_at: datetime = Field(default_factory=_utcnow)


class CouponApplied(EventPayload):
    event_type: ClassVar[str] = "CouponApplied"

    coupon_code: str
    user_id: str
    discount_amount: Decimal
    original_amount: Decimal
    final_amount: Decimal
    applied_at: datetime = Field(default_factory=_utcnow)


class UserRegistered(EventPayload):
    event_type: ClassVar[str] = "UserRegistered"

    user_id: str
    email: str
    name: str = ""
    registered_at: datetime = Field(default_factory=_utcnow)


ALL_PAYLOADS = (
    CartCheckedOut,
    OrderPlaced,
    PaymentCompleted,
    RewardPointsEarned,
    PointsRedeemed,
    InventoryUpdated,
    CouponApplied,
    UserRegistered,
)
