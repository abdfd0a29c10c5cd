"""Tests for the observability EventBus."""

import pytest

from relaystream.events.bus import EventBus
from relaystream.stream.responses import ResponsesStream
from relaystream.types import StreamEvent, StreamEventKind


class TestDelivery:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self, bus: EventBus):
        received = []

        async def on_async(event: StreamEvent):
            received.append(("async", event.kind))

        def on_sync(event: StreamEvent):
            received.append(("sync", event.kind))

        bus.subscribe(StreamEventKind.USAGE, on_async)
        bus.subscribe(StreamEventKind.USAGE, on_sync)
        await bus.publish(StreamEventKind.USAGE, tokens=3)

        assert sorted(received) == [
            ("async", StreamEventKind.USAGE), ("sync", StreamEventKind.USAGE),
        ]

    @pytest.mark.asyncio
    async def test_kind_filtering_and_string_keys(self, bus: EventBus):
        received = []
        bus.subscribe("stream.error", lambda e: received.append(e))

        await bus.publish(StreamEventKind.STREAM_CLOSED)
        await bus.publish(StreamEventKind.STREAM_ERROR, error="x")

        assert [e.kind for e in received] == [StreamEventKind.STREAM_ERROR]
        assert received[0].data == {"error": "x"}

    @pytest.mark.asyncio
    async def test_wildcard(self, bus: EventBus):
        kinds = []
        bus.subscribe("*", lambda e: kinds.append(e.kind))
        await bus.publish(StreamEventKind.REQUEST_STARTED)
        await bus.publish(StreamEventKind.STRUCTURED_RETRY)
        assert kinds == [StreamEventKind.REQUEST_STARTED, StreamEventKind.STRUCTURED_RETRY]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus: EventBus):
        received = []

        def handler(event: StreamEvent):
            received.append(event)

        bus.subscribe(StreamEventKind.USAGE, handler)
        bus.unsubscribe(StreamEventKind.USAGE, handler)
        bus.unsubscribe(StreamEventKind.USAGE, handler)
        await bus.publish(StreamEventKind.USAGE)
        assert received == []

    @pytest.mark.asyncio
    async def test_handler_exception_is_logged_not_raised(self, bus: EventBus, caplog):
        received = []

        def bad(event: StreamEvent):
            raise ValueError("boom")

        bus.subscribe(StreamEventKind.USAGE, bad)
        bus.subscribe(StreamEventKind.USAGE, received.append)
        await bus.publish(StreamEventKind.USAGE)

        assert len(received) == 1
        assert "boom" in caplog.text


    @pytest.mark.asyncio
    async def test_publish_requires_event_kind(self, bus: EventBus):
        with pytest.raises(TypeError):
            await bus.publish("usage")


class TestRequestScope:
    @pytest.mark.asyncio
    async def test_scoped_handler_sees_only_its_request(self, bus: EventBus):
        seen = []
        bus.subscribe(StreamEventKind.USAGE, lambda e: seen.append(e.data["n"]), request_id="req-1")

        await bus.publish(StreamEventKind.USAGE, request_id="req-1", n=1)
        await bus.publish(StreamEventKind.USAGE, request_id="req-2", n=2)
        await bus.publish(StreamEventKind.USAGE, n=3)

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_scoped_wildcard_and_unsubscribe(self, bus: EventBus):
        kinds = []

        def handler(event: StreamEvent):
            kinds.append(event.kind)

        bus.subscribe("*", handler, request_id="req-1")
        await bus.publish(StreamEventKind.STREAM_CLOSED, request_id="req-1")
        bus.unsubscribe("*", handler)
        await bus.publish(StreamEventKind.STREAM_ERROR, request_id="req-1")

        assert kinds == [StreamEventKind.STREAM_CLOSED]

    @pytest.mark.asyncio
    async def test_stream_events_carry_request_id(self, bus: EventBus, make_response, lines):
        body = lines(
            {"type": "start", "request_id": "resp_1"},
            {"type": "update", "delta": "hi"},
            {"type": "completion", "usage": {"input_tokens": 1, "output_tokens": 1}},
        )
        first_token = []
        bus.subscribe(StreamEventKind.STREAM_FIRST_TOKEN, first_token.append, request_id="req-1")
        bus.subscribe(StreamEventKind.STREAM_FIRST_TOKEN, first_token.append, request_id="other")

        stream = ResponsesStream(make_response([body]), "req-1", bus=bus, context={"model": "m"})
        await stream.collect()

        assert len(first_token) == 1
        assert first_token[0].request_id == "req-1"
        assert [e.kind for e in bus.events_for("req-1", StreamEventKind.STREAM_CLOSED)] == [
            StreamEventKind.STREAM_CLOSED,
        ]
        assert bus.events_for("other") == []


class TestHistory:
    @pytest.mark.asyncio
    async def test_bounded_history(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.publish(StreamEventKind.STREAM_EVENT, i=i)
        assert [e.data["i"] for e in bus.history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_clear(self, bus: EventBus):
        bus.subscribe("*", lambda e: None)
        await bus.publish(StreamEventKind.USAGE)
        bus.clear()
        assert bus.history == []
        assert bus._subscriptions == {}
