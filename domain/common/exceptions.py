"""领域层业务异常定义，供领域、应用与基础设施使用。

同步调用方（例如积分兑换）直接收到这些异常；异步 consumer 中抛出的
业务异常由消息分发器按重试策略处理。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
            message_key="order.not_found",
        )


class OrderStateConflictException(BusinessException):
    def __init__(self, order_id: str, status: str, target: str):
        super().__init__(
            code=BusinessCode.ORDER_STATE_CONFLICT,
            message=f"Cannot move order from {status} to {target}",
            error_type="OrderStateConflict",
            details={"order_id": order_id, "status": status, "target": target},
            field="status",
            message_key="order.status.conflict",
        )


class CartNotFoundException(BusinessException):
    def __init__(self, user_id: str):
        super().__init__(
            code=BusinessCode.CART_NOT_FOUND,
            message="Cart not found",
            error_type="CartNotFound",
            details={"user_id": user_id},
            message_key="cart.not_found",
        )


class EmptyCartException(BusinessException):
    def __init__(self, user_id: str):
        super().__init__(
            code=BusinessCode.CART_EMPTY,
            message="Cart has no items",
            error_type="EmptyCart",
            details={"user_id": user_id},
            message_key="cart.empty",
        )


class RewardAccountNotFoundException(BusinessException):
    def __init__(self, user_id: str):
        super().__init__(
            code=BusinessCode.REWARD_ACCOUNT_NOT_FOUND,
            message="Reward account not found",
            error_type="RewardAccountNotFound",
            details={"user_id": user_id},
            message_key="reward.not_found",
        )


class InsufficientPointsException(BusinessException):
    def __init__(self, user_id: str, requested: int, available: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_POINTS,
            message="Insufficient points",
            error_type="InsufficientPoints",
            details={"user_id": user_id, "requested": requested, "available": available},
            field="points",
            message_key="reward.points.insufficient",
            format_params={"requested": requested, "available": available},
        )


class DeadLetterNotFoundException(BusinessException):
    def __init__(self, event_id: str, consumer_name: str):
        super().__init__(
            code=BusinessCode.DEAD_LETTER_NOT_FOUND,
            message="Dead letter not found",
            error_type="DeadLetterNotFound",
            details={"event_id": event_id, "consumer": consumer_name},
            message_key="dead_letter.not_found",
        )


class DeadLetterStateConflictException(BusinessException):
    def __init__(self, event_id: str, status: str):
        super().__init__(
            code=BusinessCode.DEAD_LETTER_STATE_CONFLICT,
            message=f"Dead letter already {status}",
            error_type="DeadLetterStateConflict",
            details={"event_id": event_id, "status": status},
            message_key="dead_letter.state.conflict",
        )
