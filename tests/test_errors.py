"""Tests for the error hierarchy and non-2xx response parsing."""

import httpx
import pytest

from relaystream.errors import (
    APIError,
    ConfigError,
    RelayError,
    StreamTimeoutError,
    StructuredExhaustedError,
    TransportError,
    parse_error_response,
)
from relaystream.types import AttemptRecord, DecodeFailure


def _response(status: int, content: bytes = b"", headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status, content=content, headers=headers or {},
        request=httpx.Request("POST", "http://test/responses"),
    )


class TestHierarchy:
    def test_categories(self):
        assert ConfigError("x").category == "config"
        assert ConfigError("x").status == 400
        assert TransportError("x", kind="connect").category == "transport"
        assert APIError("x", status=500).category == "api"
        for cls in (ConfigError, TransportError, APIError, StructuredExhaustedError):
            assert issubclass(cls, RelayError)

    def test_stream_timeout(self):
        err = StreamTimeoutError("idle", 1500)
        assert isinstance(err, TransportError)
        assert err.kind == "timeout"
        assert err.status == 408
        assert str(err) == "stream idle timeout after 1500ms"

    def test_exhausted_message(self):
        records = [AttemptRecord(1, "x", DecodeFailure("bad")), AttemptRecord(2, "y", DecodeFailure("worse"))]
        err = StructuredExhaustedError("y", records, records[-1].error)
        assert "2 attempts" in str(err)
        assert "worse" in str(err)


class TestParseErrorResponse:
    @pytest.mark.asyncio
    async def test_nested_error_object(self):
        resp = _response(
            400,
            b'{"error": {"code": "INVALID_INPUT", "message": "bad field", '
            b'"fields": [{"field": "model", "message": "required"}]}, "request_id": "body-rid"}',
        )
        err = await parse_error_response(resp)
        assert err.status == 400
        assert err.code == "INVALID_INPUT"
        assert err.message == "bad field"
        assert err.fields == [{"field": "model", "message": "required"}]
        assert err.request_id == "body-rid"

    @pytest.mark.asyncio
    async def test_flat_message(self):
        resp = _response(401, b'{"message": "unauthorized", "code": "AUTH"}',
                         headers={"X-ModelRelay-Request-Id": "hdr-rid"})
        err = await parse_error_response(resp)
        assert err.message == "unauthorized"
        assert err.code == "AUTH"
        assert err.request_id == "hdr-rid"

    @pytest.mark.asyncio
    async def test_plain_text_body(self):
        err = await parse_error_response(_response(502, b"upstream exploded"))
        assert err.message == "upstream exploded"
        assert err.status == 502

    @pytest.mark.asyncio
    async def test_empty_body_uses_reason_phrase(self):
        err = await parse_error_response(_response(503, headers={"X-Request-Id": "fallback"}))
        assert err.message == "Service Unavailable"
        assert err.request_id == "fallback"

    @pytest.mark.asyncio
    async def test_json_without_message(self):
        err = await parse_error_response(_response(500, b'{"detail": 1}'))
        assert err.message == "Internal Server Error"
        assert err.data == {"detail": 1}
