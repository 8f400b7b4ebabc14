from __future__ import annotations

from typing import Any, Optional

import structlog

from ..base import ConsumeMiddleware, HandleResult, Message, PublishMiddleware, PublishResult
from ..headers import H_EVENT_TYPE, get_attempts, get_text


class LoggingMiddleware(PublishMiddleware, ConsumeMiddleware):
    def __init__(self, logger: Optional[Any] = None) -> None:
        self.log = logger or structlog.get_logger("messaging")

    def before_publish(self, topic: str, msg: Message) -> Message:  # type: ignore[override]
        self.log.debug(
            "publishing",
            topic=topic,
            key=(msg.key or b"").decode("utf-8", errors="replace"),
            headers=list(msg.headers.keys()),
        )
        return msg

    def after_publish(self, topic: str, msg: Message, result: PublishResult) -> None:  # type: ignore[override]
        self.log.info(
            "published",
            topic=topic,
            partition=result.partition,
            offset=result.offset,
            event_type=get_text(msg.headers, H_EVENT_TYPE),
        )

    def before_handle(self, topic: str, partition: int, offset: int, msg: Message) -> Message:  # type: ignore[override]
        self.log.debug(
            "handling",
            topic=topic,
            partition=partition,
            offset=offset,
            attempt=get_attempts(msg.headers) + 1,
        )
        return msg

    def after_handle(
        self,
        topic: str,
        partition: int,
        offset: int,
        msg: Message,
        result: HandleResult,
        exc: Optional[BaseException] = None,
    ) -> None:  # type: ignore[override]
        log = self.log.error if exc else self.log.info
        log(
            "handled",
            topic=topic,
            partition=partition,
            offset=offset,
            result=result.value,
            error=str(exc) if exc else None,
        )
