"""
基于日志的通知发送器

本地开发与默认部署使用：邮件内容写入结构化日志，不连接任何邮件服务。
"""
from __future__ import annotations

from application.ports.notification import EmailMessage, NotificationSender
from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingNotificationSender(NotificationSender):
    def __init__(self, *, sender_address: str = "no-reply@commerce.local") -> None:
        self.sender_address = sender_address

    async def send_email(self, message: EmailMessage) -> None:
        if not message.to or "@" not in message.to:
            raise ValueError(f"invalid recipient: {message.to!r}")
        logger.info(
            "email_dispatched",
            sender=self.sender_address,
            to=message.to,
            subject=message.subject,
            body_length=len(message.body),
        )
