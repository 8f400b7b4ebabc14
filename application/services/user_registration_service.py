"""
用户注册事件发布：在调用方事务内把 UserRegistered 写入 outbox
"""
from __future__ import annotations

from typing import Optional

from application.events.contracts import UserRegistered
from application.events.envelope import EventEnvelope, new_envelope, validate_correlation_id
from application.services.outbox_writer import OutboxWriter
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import UnitOfWorkFactory


logger = get_logger(__name__)


class UserRegistrationService:
    def __init__(self, uow_factory: UnitOfWorkFactory, outbox: OutboxWriter) -> None:
        self._uow_factory = uow_factory
        self._outbox = outbox

    async def announce(
        self,
        user_id: str,
        email: str,
        name: str = "",
        *,
        correlation_id: Optional[str] = None,
    ) -> EventEnvelope:
        if "@" not in email:
            raise DomainValidationException("Invalid email address", field="email")
        validate_correlation_id(correlation_id)
        envelope = new_envelope(
            UserRegistered(user_id=user_id, email=email, name=name),
            correlation_id=correlation_id,
        )
        async with self._uow_factory() as uow:
            await self._outbox.enqueue(uow, envelope, aggregate_type="User", aggregate_id=user_id)
        logger.info("user_registered", user_id=user_id, event_id=envelope.event_id)
        return envelope
