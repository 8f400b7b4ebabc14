"""
Shared business codes used across layers (Domain/Application/Infrastructure).

This module provides a single source of truth to avoid drift between
multiple enum definitions scattered across the codebase.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """业务状态码定义（单一来源）"""

    # 成功
    SUCCESS = 0

    # 参数错误 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_VALIDATION_ERROR = 10003

    # 业务错误 (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # 资源未找到（通用）
    ORDER_NOT_FOUND = 20101
    ORDER_STATE_CONFLICT = 20102
    CART_NOT_FOUND = 20201
    CART_EMPTY = 20202
    REWARD_ACCOUNT_NOT_FOUND = 20301
    INSUFFICIENT_POINTS = 20302
    DEAD_LETTER_NOT_FOUND = 20401
    DEAD_LETTER_STATE_CONFLICT = 20402

    # 系统错误 (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
