"""Normalization of wire payloads into relaystream types.

The server speaks snake_case JSON; these helpers are lenient about shapes
and coerce unknown values rather than rejecting them.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from relaystream.errors import APIError, TransportError
from relaystream.types import Citation, FunctionCall, Response, ToolCall, ToolType, Usage

_logger = logging.getLogger(__name__)


def is_record(value: Any) -> bool:
    return isinstance(value, dict)


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def normalize_usage(value: Any) -> Usage | None:
    """``{"input_tokens", "output_tokens", "total_tokens"}`` -> ``Usage``."""
    if not is_record(value):
        return None
    return Usage(
        input_tokens=_as_int(value.get("input_tokens")) or 0,
        output_tokens=_as_int(value.get("output_tokens")) or 0,
        total_tokens=_as_int(value.get("total_tokens")),
    )


def normalize_model_id(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_stop_reason(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_citations(value: Any) -> list[Citation] | None:
    if not isinstance(value, list) or not value:
        return None
    citations: list[Citation] = []
    for item in value:
        if not is_record(item):
            continue
        url = item.get("url")
        title = item.get("title")
        citations.append(
            Citation(
                url=url if isinstance(url, str) and url.strip() else None,
                title=title if isinstance(title, str) and title.strip() else None,
            )
        )
    return citations or None


def normalize_function(value: Any) -> FunctionCall | None:
    if not is_record(value):
        return None
    name = value.get("name")
    arguments = value.get("arguments")
    return FunctionCall(
        name=name if isinstance(name, str) else "",
        arguments=arguments if isinstance(arguments, str) else "",
    )


def normalize_tool_calls(values: list[Any]) -> list[ToolCall]:
    """Complete tool calls; unknown tool types become ``function``."""
    calls: list[ToolCall] = []
    for tc in values:
        if not is_record(tc):
            calls.append(ToolCall())
            continue
        tc_id = tc.get("id")
        calls.append(
            ToolCall(
                id=tc_id if isinstance(tc_id, str) else "",
                type=ToolType.coerce(tc.get("type")),
                function=normalize_function(tc.get("function")),
            )
        )
    return calls


def _normalize_output(output: Any) -> list[dict[str, Any]]:
    if not isinstance(output, list):
        return []
    items: list[dict[str, Any]] = []
    for item in output:
        if not is_record(item):
            continue
        if isinstance(item.get("tool_calls"), list):
            item = dict(item)
            item["tool_calls"] = normalize_tool_calls(item["tool_calls"])
        items.append(item)
    return items


def normalize_response(payload: Any, request_id: str | None = None) -> Response:
    """Turn a buffered ``/responses`` JSON body into a ``Response``."""
    if not is_record(payload):
        raise APIError("invalid response payload", status=200, data=payload)
    usage = normalize_usage(payload.get("usage"))
    if usage is None:
        raise APIError("missing usage in response", status=200, data=payload)
    model = normalize_model_id(payload.get("model"))
    if model is None:
        raise APIError("missing model in response", status=200, data=payload)
    provider = payload.get("provider")
    response_id = payload.get("id")
    return Response(
        id=response_id if isinstance(response_id, str) else str(response_id or ""),
        model=model,
        usage=usage,
        output=_normalize_output(payload.get("output")),
        provider=provider if isinstance(provider, str) and provider.strip() else None,
        stop_reason=normalize_stop_reason(payload.get("stop_reason")),
        request_id=request_id,
        citations=normalize_citations(payload.get("citations")),
    )


def extract_assistant_text(response: Response) -> str:
    """Return the assistant text of *response*; empty text is an error."""
    text = response.text
    if not text.strip():
        raise TransportError(
            "response contained no assistant text output", kind="empty_response",
        )
    return text
