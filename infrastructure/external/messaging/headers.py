from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional


H_ATTEMPTS = "x-attempts"
H_ORIGINAL_TOPIC = "x-original-topic"
H_RETRY_NOT_BEFORE = "x-retry-not-before"
H_CORR_ID = "x-corr-id"
H_EVENT_TYPE = "x-event-type"
H_ERROR_CLASS = "x-error-class"
H_ERROR_MSG = "x-error-msg"

MAX_ERROR_MSG_BYTES = 2048


def _to_bytes_int(n: int) -> bytes:
    return str(n).encode("ascii")


def _to_int(b: Optional[bytes]) -> Optional[int]:
    if b is None:
        return None
    try:
        return int(b.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        return None


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def get_text(headers: Dict[str, bytes], key: str) -> Optional[str]:
    v = headers.get(key)
    if v is None:
        return None
    return v.decode("utf-8", errors="replace")


def set_text(headers: Dict[str, bytes], key: str, value: str) -> None:
    headers[key] = value.encode("utf-8")


def get_attempts(headers: Dict[str, bytes]) -> int:
    """Number of failed deliveries so far; a fresh message has none."""
    v = headers.get(H_ATTEMPTS)
    return _to_int(v) or 0


def bump_attempts(headers: Dict[str, bytes]) -> int:
    n = get_attempts(headers) + 1
    headers[H_ATTEMPTS] = _to_bytes_int(n)
    return n


def get_not_before_ms(headers: Dict[str, bytes]) -> Optional[int]:
    return _to_int(headers.get(H_RETRY_NOT_BEFORE))


def set_not_before_ms(headers: Dict[str, bytes], ts_ms: int) -> None:
    headers[H_RETRY_NOT_BEFORE] = _to_bytes_int(ts_ms)


def ensure_original_topic(headers: Dict[str, bytes], topic: str) -> None:
    if H_ORIGINAL_TOPIC not in headers:
        headers[H_ORIGINAL_TOPIC] = topic.encode("utf-8")


def original_topic(headers: Dict[str, bytes], fallback: str) -> str:
    return get_text(headers, H_ORIGINAL_TOPIC) or fallback


def set_error(headers: Dict[str, bytes], exc: BaseException) -> None:
    headers[H_ERROR_CLASS] = type(exc).__name__.encode("utf-8")
    headers[H_ERROR_MSG] = str(exc).encode("utf-8")[:MAX_ERROR_MSG_BYTES]


def to_text(headers: Dict[str, bytes]) -> Dict[str, str]:
    return {k: v.decode("utf-8", errors="replace") for k, v in headers.items()}


def from_text(headers: Dict[str, str]) -> Dict[str, bytes]:
    return {k: v.encode("utf-8") for k, v in headers.items()}
