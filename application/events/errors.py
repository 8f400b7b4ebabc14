"""
Errors raised while decoding envelopes or handling events.

The message dispatcher dead-letters ``EventContractError`` and
``PermanentHandlerError`` straight away; every other handler exception is
treated as transient and redelivered until the attempt budget is spent.
"""
from __future__ import annotations


class EventContractError(Exception):
    pass


class UnknownEventTypeError(EventContractError):
    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


class EventDecodeError(EventContractError):
    pass


class PermanentHandlerError(Exception):
    """Retrying cannot change the outcome."""


class DependencyNotReadyError(Exception):
    """A logically prior event has not been processed yet; try again later."""
