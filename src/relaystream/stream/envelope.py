"""Map unified NDJSON envelopes to ``ResponseEvent``.

Envelope shapes::

    {"type": "start", "request_id": "...", "provider": "...", "model": "..."}
    {"type": "update", "delta": "...", "complete_fields": []}
    {"type": "completion", "content": "...", "usage": {...}, "stop_reason": "..."}
    {"type": "tool_use_delta", "tool_call_delta": {"index": 0, ...}}
    {"type": "keepalive"}
"""

from __future__ import annotations

import json
import logging
from typing import Any

from relaystream.errors import TransportError
from relaystream.normalize import (
    is_record,
    normalize_model_id,
    normalize_stop_reason,
    normalize_tool_calls,
    normalize_usage,
)
from relaystream.types import EventType, FunctionCall, ResponseEvent, ToolCall, ToolCallDelta

_logger = logging.getLogger(__name__)

KEEPALIVE = "keepalive"

_EVENT_TYPES: dict[str, EventType] = {
    "start": EventType.MESSAGE_START,
    "update": EventType.MESSAGE_DELTA,
    "completion": EventType.MESSAGE_STOP,
    "tool_use_start": EventType.TOOL_USE_START,
    "tool_use_delta": EventType.TOOL_USE_DELTA,
    "tool_use_stop": EventType.TOOL_USE_STOP,
    "ping": EventType.PING,
}


def _preview(value: Any, limit: int = 200) -> str:
    return json.dumps(value)[:limit]


def parse_ndjson_record(line: str) -> tuple[str, dict[str, Any]] | None:
    """Parse one NDJSON line into ``(record_type, payload)``.

    Returns ``None`` for keepalive records.  Malformed JSON, non-object
    records and a missing ``type`` raise ``TransportError``.
    """
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError as e:
        raise TransportError(
            f"Failed to parse NDJSON line: {e}", kind="protocol",
        ) from e
    if not is_record(parsed):
        raise TransportError(
            f"NDJSON record is not an object: {_preview(parsed)}", kind="protocol",
        )
    raw_type = parsed.get("type")
    record_type = raw_type.strip().lower() if isinstance(raw_type, str) else ""
    if record_type == KEEPALIVE:
        return None
    if not record_type:
        raise TransportError(
            f"NDJSON record missing 'type' field: {_preview(parsed)}",
            kind="protocol",
        )
    return record_type, parsed


def map_ndjson_event(line: str, request_id: str | None = None) -> ResponseEvent | None:
    """Map one framed NDJSON line to a ``ResponseEvent`` (``None`` for keepalive)."""
    record = parse_ndjson_record(line)
    if record is None:
        return None
    record_type, payload = record
    event_type = _EVENT_TYPES.get(record_type, EventType.CUSTOM)

    text_delta: str | None = None
    if record_type == "update" and isinstance(payload.get("delta"), str):
        text_delta = payload["delta"]
    elif record_type == "completion" and isinstance(payload.get("content"), str):
        text_delta = payload["content"]

    response_id = payload.get("request_id")
    if not (isinstance(response_id, str) and response_id.strip()):
        response_id = None

    return ResponseEvent(
        type=event_type,
        event=record_type,
        data=payload,
        raw=line,
        text_delta=text_delta,
        tool_call_delta=_extract_tool_call_delta(payload, event_type),
        tool_calls=_extract_tool_calls(payload, event_type),
        response_id=response_id,
        model=normalize_model_id(payload.get("model")),
        stop_reason=normalize_stop_reason(payload.get("stop_reason")),
        usage=normalize_usage(payload.get("usage")),
        request_id=request_id,
    )


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int_index(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _extract_tool_call_delta(
    payload: dict[str, Any], event_type: EventType,
) -> ToolCallDelta | None:
    if event_type not in (EventType.TOOL_USE_START, EventType.TOOL_USE_DELTA):
        return None

    nested = payload.get("tool_call_delta")
    if is_record(nested):
        fn = nested.get("function")
        function = None
        if is_record(fn):
            function = FunctionCall(
                name=_str_or_none(fn.get("name")) or "",
                arguments=_str_or_none(fn.get("arguments")) or "",
            )
        return ToolCallDelta(
            index=_int_index(nested.get("index")),
            id=_str_or_none(nested.get("id")),
            type=_str_or_none(nested.get("type")),
            function=function,
        )

    # Legacy flattened fields
    has_index = isinstance(payload.get("index"), int)
    name = _str_or_none(payload.get("name"))
    arguments = _str_or_none(payload.get("arguments"))
    tc_id = _str_or_none(payload.get("id"))
    if not (has_index or tc_id is not None or name is not None):
        return None
    function = None
    if name is not None or arguments is not None:
        function = FunctionCall(name=name or "", arguments=arguments or "")
    return ToolCallDelta(
        index=_int_index(payload.get("index")),
        id=tc_id,
        type=_str_or_none(payload.get("tool_type")),
        function=function,
    )


def _extract_tool_calls(
    payload: dict[str, Any], event_type: EventType,
) -> list[ToolCall] | None:
    if event_type not in (EventType.TOOL_USE_STOP, EventType.MESSAGE_STOP):
        return None
    tool_calls = payload.get("tool_calls")
    if isinstance(tool_calls, list) and tool_calls:
        return normalize_tool_calls(tool_calls)
    if payload.get("tool_call") is not None:
        return normalize_tool_calls([payload["tool_call"]])
    return None
