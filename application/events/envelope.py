"""
Event envelope: identity and routing metadata around one payload.

``event_id`` is generated exactly once when the envelope is created and is the
idempotency key for every consumer. Re-publishing (relay retries, dead-letter
replay) always reuses the serialized bytes, so the id never changes.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, field_validator, model_validator

from domain.common.exceptions import DomainValidationException

from .contracts import EventPayload

# Width of the event_id / correlation_id storage columns.
MAX_ID_LENGTH = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    # Required on the wire: a decoded envelope must carry the id it was created with.
    event_id: str = Field(min_length=1, max_length=MAX_ID_LENGTH)
    event_type: str
    correlation_id: str = Field(min_length=1, max_length=MAX_ID_LENGTH)
    causation_id: Optional[str] = Field(default=None, max_length=MAX_ID_LENGTH)
    occurred_at: datetime
    schema_version: int = 1
    payload: SerializeAsAny[EventPayload]

    @field_validator("occurred_at")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _tag_matches_payload(self) -> "EventEnvelope":
        tag = type(self.payload).event_type
        if tag and tag != self.event_type:
            raise ValueError(f"event_type {self.event_type!r} does not match payload {tag!r}")
        return self


def new_envelope(
    payload: EventPayload,
    *,
    correlation_id: Optional[str] = None,
    causation: Optional[EventEnvelope] = None,
) -> EventEnvelope:
    """Build an envelope for a freshly observed business fact.

    Follow-on events inherit the correlation id of the event that caused them,
    so a whole checkout can be traced end to end; a new saga gets a new id.
    """
    if causation is not None:
        correlation_id = correlation_id or causation.correlation_id
    return EventEnvelope(
        event_id=str(uuid.uuid4()),
        occurred_at=_utcnow(),
        event_type=type(payload).event_type,
        correlation_id=correlation_id or str(uuid.uuid4()),
        causation_id=causation.event_id if causation is not None else None,
        payload=payload,
    )


def validate_correlation_id(correlation_id: Optional[str]) -> None:
    """Reject a caller-supplied correlation id that could not be stored."""
    if correlation_id is not None and not 0 < len(correlation_id) <= MAX_ID_LENGTH:
        raise DomainValidationException(
            f"correlation_id must be 1..{MAX_ID_LENGTH} characters",
            field="correlation_id",
        )
