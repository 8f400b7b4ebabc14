"""Notification sender port.

Delivery is fire-and-forget from the caller's point of view: a failure is
reported by raising, and the caller decides whether to log or propagate.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str


@runtime_checkable
class NotificationSender(Protocol):
    async def send_email(self, message: EmailMessage) -> None: ...


__all__ = ["EmailMessage", "NotificationSender"]
