"""
EmailNotification：UserRegistered / OrderPlaced -> 发送邮件（尽力而为）

声明在事务内完成并先提交，邮件在提交后发送；发送失败只记录日志，
不阻塞确认，也不会因为重投而重复发送。
"""
from __future__ import annotations

from application.consumers.base import IdempotentConsumer, UnitOfWorkFactory
from application.events.contracts import OrderPlaced, UserRegistered
from application.events.envelope import EventEnvelope
from application.ports.notification import EmailMessage, NotificationSender
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


def render_email(envelope: EventEnvelope) -> EmailMessage | None:
    payload = envelope.payload
    if isinstance(payload, UserRegistered):
        return EmailMessage(
            to=payload.email,
            subject="Welcome!",
            body=f"Hi {payload.name or payload.email}, thanks for registering.",
        )
    if isinstance(payload, OrderPlaced):
        if not payload.user_email:
            return None
        lines = [f"- {i.product_name or i.product_id} x{i.quantity}: {i.total}" for i in payload.items]
        return EmailMessage(
            to=payload.user_email,
            subject=f"Order {payload.order_id} confirmed",
            body="\n".join(
                [f"Hi {payload.user_name or payload.user_email},", "", *lines, "", f"Total: {payload.total_amount}"]
            ),
        )
    return None


class EmailNotificationConsumer(IdempotentConsumer):
    name = "email-notification"
    event_types = (UserRegistered.event_type, OrderPlaced.event_type)

    def __init__(self, uow_factory: UnitOfWorkFactory, outbox: OutboxWriter, sender: NotificationSender) -> None:
        super().__init__(uow_factory, outbox)
        self.sender = sender

    async def handle(self, uow: AbstractUnitOfWork, envelope: EventEnvelope) -> None:
        # 仅声明；发送放在提交之后
        return None

    async def after_commit(self, envelope: EventEnvelope) -> None:
        message = render_email(envelope)
        if message is None:
            logger.info("notification_skipped", reason="no_recipient")
            return
        try:
            await self.sender.send_email(message)
        except Exception as e:  # noqa: BLE001
            logger.error("notification_failed", to=message.to, error_class=type(e).__name__, error=str(e))
            return
        logger.info("notification_sent", to=message.to, subject=message.subject)
