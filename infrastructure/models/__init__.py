"""Infrastructure models package exports."""
from .base import Base, metadata
from .cart import CartItemModel, CartModel
from .messaging import DeadLetterModel, OutboxModel, ProcessedEventModel
from .order import OrderItemModel, OrderModel
from .reward import RewardAccountModel, RewardLedgerModel, RewardTrackedOrderModel

__all__ = [
    "Base",
    "metadata",
    "CartModel",
    "CartItemModel",
    "DeadLetterModel",
    "OutboxModel",
    "ProcessedEventModel",
    "OrderModel",
    "OrderItemModel",
    "RewardAccountModel",
    "RewardLedgerModel",
    "RewardTrackedOrderModel",
]
