from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple, Type

from ..config import RetryConfig
from ..exceptions import NonRetryableError


@dataclass(slots=True)
class RetryDecision:
    next_topic: str
    delay_ms: int
    is_dlq: bool


class RetryPolicy:
    """Redelivery state machine for one consumer group.

    Delivery ``n`` (1-based) that fails is redelivered as ``n + 1`` after an
    exponential delay, unless ``n`` already equals ``max_attempts`` or the
    error is non-retryable, in which case the message is dead-lettered.
    """

    def __init__(self, cfg: RetryConfig, non_retryable: Iterable[Type[BaseException]] = ()) -> None:
        self.cfg = cfg
        self.non_retryable: Tuple[Type[BaseException], ...] = (NonRetryableError, *non_retryable)

    def retry_topic(self, main: str, group_id: str) -> str:
        return f"{main}.{self.cfg.retry_suffix}.{group_id}"

    def dlq_topic(self, main: str) -> str:
        return f"{main}.{self.cfg.dlq_suffix}"

    def analyze_topic(self, topic: str, group_id: str) -> Tuple[str, bool]:
        suf = f".{self.cfg.retry_suffix}.{group_id}"
        if topic.endswith(suf):
            return topic[: -len(suf)], True
        suf_dlq = "." + self.cfg.dlq_suffix
        if topic.endswith(suf_dlq):
            return topic[: -len(suf_dlq)], False
        return topic, False

    def is_retryable(self, exc: BaseException) -> bool:
        return not isinstance(exc, self.non_retryable)

    def backoff_ms(self, attempt: int) -> int:
        if self.cfg.delay_ms <= 0:
            return 0
        return min(self.cfg.delay_ms * (2 ** max(0, attempt - 1)), self.cfg.max_delay_ms)

    def decide(self, topic: str, group_id: str, attempt: int, exc: BaseException) -> RetryDecision:
        main, _ = self.analyze_topic(topic, group_id)
        if not self.is_retryable(exc) or attempt >= self.cfg.max_attempts:
            return RetryDecision(next_topic=self.dlq_topic(main), delay_ms=0, is_dlq=True)
        return RetryDecision(
            next_topic=self.retry_topic(main, group_id),
            delay_ms=self.backoff_ms(attempt),
            is_dlq=False,
        )
