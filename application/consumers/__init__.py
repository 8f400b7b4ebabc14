from .base import IdempotentConsumer, UnitOfWorkFactory
from .email_notification import EmailNotificationConsumer
from .order_placement import OrderPlacementConsumer
from .rewards import RewardAccrualConsumer, RewardLedgerAuditConsumer, RewardOrderTrackingConsumer

__all__ = [
    "IdempotentConsumer",
    "UnitOfWorkFactory",
    "EmailNotificationConsumer",
    "OrderPlacementConsumer",
    "RewardAccrualConsumer",
    "RewardLedgerAuditConsumer",
    "RewardOrderTrackingConsumer",
]
