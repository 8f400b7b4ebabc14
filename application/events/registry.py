"""
Schema registry and wire codec for event envelopes.

The registry maps the ``event_type`` discriminator to its payload model.
Decoding is forward compatible (unknown fields are dropped by the models) but
strict about the tag: an unregistered ``event_type`` raises
``UnknownEventTypeError`` so the consumer can dead-letter the message instead
of crashing.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional, Type

from pydantic import ValidationError

from .contracts import ALL_PAYLOADS, EventPayload
from .envelope import MAX_ID_LENGTH, EventEnvelope
from .errors import EventDecodeError, UnknownEventTypeError


MAX_EVENT_TYPE_LENGTH = 100


class SchemaRegistry:
    def __init__(self, payloads: Iterable[Type[EventPayload]] = ()) -> None:
        self._types: Dict[str, Type[EventPayload]] = {}
        for p in payloads:
            self.register(p)

    def register(self, model: Type[EventPayload]) -> None:
        tag = model.event_type
        if not tag:
            raise ValueError(f"{model.__name__} has no event_type")
        existing = self._types.get(tag)
        if existing is not None and existing is not model:
            raise ValueError(f"event_type {tag!r} already registered to {existing.__name__}")
        self._types[tag] = model

    def model_for(self, event_type: str) -> Type[EventPayload]:
        try:
            return self._types[event_type]
        except KeyError:
            raise UnknownEventTypeError(event_type) from None

    def encode(self, envelope: EventEnvelope) -> bytes:
        # Reject envelopes whose type would be undecodable on the other side.
        self.model_for(envelope.event_type)
        return envelope.model_dump_json().encode("utf-8")

    def decode(self, data: bytes) -> EventEnvelope:
        raw = _load_object(data)
        event_type = raw.get("event_type")
        if not isinstance(event_type, str) or not event_type:
            raise EventDecodeError("envelope has no event_type")
        model = self.model_for(event_type)
        try:
            payload = model.model_validate(raw.get("payload") or {})
            return EventEnvelope.model_validate({**raw, "payload": payload})
        except ValidationError as e:
            raise EventDecodeError(f"invalid {event_type} envelope: {e.error_count()} error(s)") from e


def _load_object(data: bytes) -> Dict[str, Any]:
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EventDecodeError(str(e)) from e
    if not isinstance(raw, dict):
        raise EventDecodeError("envelope must be a JSON object")
    return raw


def peek_identity(data: bytes) -> tuple[Optional[str], Optional[str], Optional[str]]:
    """Best-effort (event_id, event_type, correlation_id) of a raw message.

    Used when a message cannot be decoded and must still be dead-lettered
    under its original id. Values that are empty or too long to store come
    back as ``None``.
    """
    try:
        raw = _load_object(data)
    except EventDecodeError:
        return None, None, None

    def _s(key: str, max_length: int = MAX_ID_LENGTH) -> Optional[str]:
        v = raw.get(key)
        if not isinstance(v, str) or not v or len(v) > max_length:
            return None
        return v

    return _s("event_id"), _s("event_type", MAX_EVENT_TYPE_LENGTH), _s("correlation_id")


def default_registry() -> SchemaRegistry:
    return SchemaRegistry(ALL_PAYLOADS)
