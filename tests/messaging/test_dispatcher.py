import asyncio
import hashlib
import json
from decimal import Decimal

import pytest

from application.events.contracts import OrderPlaced
from application.events.envelope import new_envelope
from application.events.errors import DependencyNotReadyError, PermanentHandlerError
from application.events.registry import default_registry
from infrastructure.events.dispatcher import EventDispatcher
from infrastructure.external.messaging.base import HandleResult, Message
from infrastructure.external.messaging.config import RetryConfig
from infrastructure.external.messaging.headers import H_ATTEMPTS, H_ORIGINAL_TOPIC


TOPIC = "commerce.events.OrderPlaced"


class Sink:
    def __init__(self, fail: bool = False) -> None:
        self.items = []
        self.fail = fail

    async def __call__(self, dead_letter):
        if self.fail:
            raise RuntimeError("db down")
        self.items.append(dead_letter)


def _message(attempts: int = 0):
    reg = default_registry()
    env = new_envelope(
        OrderPlaced(order_id="o-1", user_id="u-1", total_amount=Decimal("25.00"), items=[]),
        correlation_id="corr-1",
    )
    headers = {}
    if attempts:
        headers[H_ATTEMPTS] = str(attempts).encode()
        headers[H_ORIGINAL_TOPIC] = TOPIC.encode()
    return env, Message(value=reg.encode(env), headers=headers, topic=TOPIC)


def _dispatcher(handler, sink, **kw):
    return EventDispatcher(
        "order-email",
        handler,
        default_registry(),
        RetryConfig(max_attempts=5, delay_ms=1),
        sink,
        **kw,
    )


@pytest.mark.asyncio
async def test_successful_handler_acks_with_decoded_envelope():
    got = []

    async def handler(envelope):
        got.append(envelope)

    env, msg = _message()
    result = await _dispatcher(handler, Sink())(msg)
    assert result is HandleResult.ACK
    assert got[0].event_id == env.event_id


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [RuntimeError("flaky"), DependencyNotReadyError("order not seen")])
async def test_transient_failure_is_retried(exc):
    async def handler(envelope):
        raise exc

    sink = Sink()
    _, msg = _message(attempts=2)
    assert await _dispatcher(handler, sink)(msg) is HandleResult.RETRY
    assert sink.items == []


@pytest.mark.asyncio
async def test_last_attempt_failure_is_dead_lettered_byte_identical():
    async def handler(envelope):
        raise RuntimeError("still broken")

    sink = Sink()
    env, msg = _message(attempts=4)
    assert await _dispatcher(handler, sink)(msg) is HandleResult.DROP

    (dl,) = sink.items
    assert dl.event_id == env.event_id
    assert dl.body == msg.value
    assert dl.attempts == 5
    assert dl.topic == TOPIC
    assert dl.consumer_name == "order-email"
    assert dl.error_class == "RuntimeError"
    assert dl.correlation_id == "corr-1"


@pytest.mark.asyncio
async def test_permanent_error_dead_letters_on_first_attempt():
    async def handler(envelope):
        raise PermanentHandlerError("never going to work")

    sink = Sink()
    _, msg = _message()
    assert await _dispatcher(handler, sink)(msg) is HandleResult.DROP
    assert sink.items[0].attempts == 1


@pytest.mark.asyncio
async def test_unknown_event_type_is_dead_lettered_under_its_id():
    called = []

    async def handler(envelope):
        called.append(envelope)

    body = json.dumps(
        {"event_id": "e-77", "event_type": "GiftCardIssued", "correlation_id": "c-1", "payload": {}}
    ).encode()
    sink = Sink()
    result = await _dispatcher(handler, sink)(Message(value=body, topic=TOPIC))

    assert result is HandleResult.DROP
    assert called == []
    assert sink.items[0].event_id == "e-77"
    assert sink.items[0].event_type == "GiftCardIssued"
    assert sink.items[0].error_class == "UnknownEventTypeError"


@pytest.mark.asyncio
async def test_garbage_body_uses_content_digest_as_id():
    async def handler(envelope):
        raise AssertionError("must not be called")

    sink = Sink()
    result = await _dispatcher(handler, sink)(Message(value=b"\x00garbage", topic=TOPIC))
    assert result is HandleResult.DROP
    assert sink.items[0].event_id == hashlib.sha256(b"\x00garbage").hexdigest()
    assert sink.items[0].body == b"\x00garbage"


@pytest.mark.asyncio
async def test_dead_letter_store_failure_keeps_message_on_queue():
    async def handler(envelope):
        raise PermanentHandlerError("x")

    _, msg = _message()
    assert await _dispatcher(handler, Sink(fail=True))(msg) is HandleResult.RETRY


@pytest.mark.asyncio
async def test_handler_timeout_counts_as_failure():
    async def handler(envelope):
        await asyncio.sleep(1)

    _, msg = _message()
    result = await _dispatcher(handler, Sink(), handler_timeout_s=0.01)(msg)
    assert result is HandleResult.RETRY


@pytest.mark.asyncio
@pytest.mark.parametrize("event_id", [None, "x" * 200])
async def test_body_without_usable_id_is_dead_lettered_under_digest(event_id):
    called = []

    async def handler(envelope):
        called.append(envelope)

    env, msg = _message()
    raw = json.loads(msg.value)
    if event_id is None:
        raw.pop("event_id")
    else:
        raw["event_id"] = event_id
    body = json.dumps(raw).encode()

    sink = Sink()
    assert await _dispatcher(handler, sink)(Message(value=body, topic=TOPIC)) is HandleResult.DROP
    assert await _dispatcher(handler, sink)(Message(value=body, topic=TOPIC)) is HandleResult.DROP

    assert called == []
    assert [d.event_id for d in sink.items] == [hashlib.sha256(body).hexdigest()] * 2
    assert sink.items[0].error_class == "EventDecodeError"
    assert sink.items[0].correlation_id == "corr-1"
