from .contracts import (
    ALL_PAYLOADS,
    CartCheckedOut,
    CouponApplied,
    EventPayload,
    InventoryUpdated,
    LineItem,
    OrderPlaced,
    PaymentCompleted,
    PointsRedeemed,
    RewardPointsEarned,
    UserRegistered,
)
from .envelope import EventEnvelope, new_envelope
from .errors import (
    DependencyNotReadyError,
    EventContractError,
    EventDecodeError,
    PermanentHandlerError,
    UnknownEventTypeError,
)
from .registry import SchemaRegistry, default_registry, peek_identity

__all__ = [
    "ALL_PAYLOADS",
    "CartCheckedOut",
    "CouponApplied",
    "EventPayload",
    "InventoryUpdated",
    "LineItem",
    "OrderPlaced",
    "PaymentCompleted",
    "PointsRedeemed",
    "RewardPointsEarned",
    "UserRegistered",
    "EventEnvelope",
    "new_envelope",
    "DependencyNotReadyError",
    "EventContractError",
    "EventDecodeError",
    "PermanentHandlerError",
    "UnknownEventTypeError",
    "SchemaRegistry",
    "default_registry",
    "peek_identity",
]
