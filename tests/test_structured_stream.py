"""Tests for StructuredJSONStream."""

import pytest

from relaystream.errors import APIError, TransportError
from relaystream.stream.base import CLOSED, ERRORED
from relaystream.stream.structured import StructuredJSONStream
from relaystream.types import StructuredEventType


async def _drain(stream: StructuredJSONStream) -> list:
    return [evt async for evt in stream]


class TestTerminalInvariant:
    @pytest.mark.asyncio
    async def test_updates_only_is_protocol_error(self, make_response, lines):
        body = lines(
            {"type": "update", "payload": {"name": "A"}},
            {"type": "update", "payload": {"name": "Ada"}},
        )
        stream = StructuredJSONStream(make_response([body]), "req-1")
        seen = []
        with pytest.raises(TransportError) as exc:
            async for evt in stream:
                seen.append(evt)
        assert exc.value.kind == "protocol"
        assert len(seen) == 2
        assert stream.state == ERRORED

    @pytest.mark.asyncio
    async def test_single_completion_succeeds(self, make_response, lines):
        body = lines(
            {"type": "start", "request_id": "x"},
            {"type": "update", "payload": {"name": "Ada"}, "complete_fields": ["name"]},
            {"type": "completion", "payload": {"name": "Ada", "age": 36},
             "complete_fields": ["name", "age"]},
        )
        resp = make_response([body])
        events = await _drain(StructuredJSONStream(resp, "req-1"))

        assert [e.type for e in events] == [
            StructuredEventType.UPDATE, StructuredEventType.COMPLETION,
        ]
        assert events[0].complete_fields == frozenset({"name"})
        assert events[1].complete_fields == frozenset({"name", "age"})
        assert events[1].payload == {"name": "Ada", "age": 36}
        assert events[1].request_id == "req-1"
        assert resp.stream.closed

    @pytest.mark.asyncio
    async def test_error_record_fails_and_discards_rest(self, make_response, lines):
        body = lines(
            {"type": "update", "payload": {"a": 1}},
            {"type": "error", "code": "SCHEMA_MISMATCH", "message": "bad output", "status": 422},
            {"type": "completion", "payload": {"a": 2}},
        )
        resp = make_response([body])
        stream = StructuredJSONStream(resp, "req-1")
        seen = []
        with pytest.raises(APIError) as exc:
            async for evt in stream:
                seen.append(evt)

        assert exc.value.code == "SCHEMA_MISMATCH"
        assert exc.value.message == "bad output"
        assert exc.value.status == 422
        assert exc.value.request_id == "req-1"
        assert len(seen) == 1
        assert await _drain(stream) == []
        assert resp.stream.closed

    @pytest.mark.asyncio
    async def test_error_record_defaults(self, make_response, lines):
        stream = StructuredJSONStream(make_response([lines({"type": "error"})]))
        with pytest.raises(APIError) as exc:
            await _drain(stream)
        assert exc.value.status == 500
        assert exc.value.message == "stream error"


class TestRecordFiltering:
    @pytest.mark.asyncio
    async def test_ignores_other_records(self, make_response, lines):
        body = lines(
            {"type": "keepalive"},
            {"type": "start"},
            {"type": "tool_use_start", "tool_call_delta": {"index": 0}},
            {"type": "ping"},
            {"type": "completion", "payload": [1, 2, 3]},
        )
        events = await _drain(StructuredJSONStream(make_response([body])))
        assert len(events) == 1
        assert events[0].payload == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_non_string_complete_fields_dropped(self, make_response, lines):
        body = lines({"type": "completion", "payload": {}, "complete_fields": ["a", 3, None, "b.c"]})
        events = await _drain(StructuredJSONStream(make_response([body])))
        assert events[0].complete_fields == frozenset({"a", "b.c"})

    @pytest.mark.asyncio
    async def test_malformed_line_still_fails(self, make_response):
        stream = StructuredJSONStream(make_response([b"[1,2]\n"]))
        with pytest.raises(TransportError):
            await _drain(stream)


class TestCollect:
    @pytest.mark.asyncio
    async def test_returns_completion_payload(self, make_response, lines):
        body = lines(
            {"type": "update", "payload": {"n": 1}},
            {"type": "completion", "payload": {"n": 2}},
        )
        stream = StructuredJSONStream(make_response([body]))
        assert await stream.collect() == {"n": 2}
        assert stream.state == CLOSED
