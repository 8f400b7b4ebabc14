"""
数据传输对象（DTO）- 应用服务对外返回的数据结构
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class CheckoutResultDTO(DTOBase):
    """结账结果：correlation_id 用于追踪整条结账链路"""
    correlation_id: str
    event_id: str
    cart_id: str
    user_id: str
    total_amount: Decimal


class OrderItemDTO(DTOBase):
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderDTO(DTOBase):
    """订单响应DTO"""
    id: str
    user_id: str
    user_email: str
    user_name: str
    total_amount: Decimal
    discount: Decimal
    coupon_code: Optional[str]
    status: str
    payment_id: Optional[str]
    paid_at: Optional[datetime]
    correlation_id: Optional[str]
    items: List[OrderItemDTO] = Field(default_factory=list)
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class LedgerEntryDTO(DTOBase):
    type: str
    points: int
    description: str
    order_id: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RewardAccountDTO(DTOBase):
    """积分账户DTO"""
    user_id: str
    points: int
    ledger: List[LedgerEntryDTO] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class RedemptionResultDTO(DTOBase):
    user_id: str
    points_redeemed: int
    discount_amount: Decimal
    balance: int
    event_id: str


class DeadLetterDTO(DTOBase):
    """死信详情DTO（body 以文本形式展示，原始字节保存在存储中）"""
    event_id: str
    consumer_name: str
    topic: str
    event_type: Optional[str]
    correlation_id: Optional[str]
    attempts: int
    error_class: Optional[str]
    error_message: Optional[str]
    status: str
    dead_lettered_at: datetime
    replayed_at: Optional[datetime]
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str
