"""Request types for the ``/responses`` endpoint."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from relaystream.stream.watchdog import StreamTimeouts

RESPONSES_PATH = "/responses"
CUSTOMER_ID_HEADER = "X-ModelRelay-Customer-Id"


# ---------------------------------------------------------------------------
# Input items
# ---------------------------------------------------------------------------

def message_item(role: str, text: str) -> dict[str, Any]:
    return {
        "type": "message",
        "role": role,
        "content": [{"type": "text", "text": text}],
    }


def user_item(text: str) -> dict[str, Any]:
    return message_item("user", text)


def system_item(text: str) -> dict[str, Any]:
    return message_item("system", text)


def assistant_item(text: str) -> dict[str, Any]:
    return message_item("assistant", text)


# ---------------------------------------------------------------------------
# Request / options
# ---------------------------------------------------------------------------

@dataclass
class ResponsesRequest:
    """Body of a ``/responses`` call."""

    input: list[dict[str, Any]]
    model: str | None = None
    provider: str | None = None
    session_id: str | None = None
    output_format: dict[str, Any] | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    stop: list[str] | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: dict[str, Any] | str | None = None

    def to_wire(self) -> dict[str, Any]:
        """JSON body with unset fields omitted."""
        body: dict[str, Any] = {"input": self.input}
        for name in (
            "provider", "model", "session_id", "output_format",
            "max_output_tokens", "temperature", "stop", "tools", "tool_choice",
        ):
            value = getattr(self, name)
            if value is not None:
                body[name] = value
        return body

    def with_input(self, items: list[dict[str, Any]]) -> ResponsesRequest:
        return replace(self, input=list(items))

    def with_output_format(self, output_format: dict[str, Any]) -> ResponsesRequest:
        return replace(self, output_format=output_format)


@dataclass
class RequestOptions:
    """Per-call options.

    Stream deadlines left as ``None`` fall back to the client defaults; ``0``
    disables a deadline explicitly.
    """

    request_id: str | None = None
    customer_id: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_ms: int | None = None
    stream_ttft_timeout_ms: int | None = None
    stream_idle_timeout_ms: int | None = None
    stream_total_timeout_ms: int | None = None

    def stream_timeouts(self, defaults: StreamTimeouts) -> StreamTimeouts:
        def pick(value: int | None, default: int) -> int:
            return default if value is None else max(0, value)

        return StreamTimeouts(
            ttft_ms=pick(self.stream_ttft_timeout_ms, defaults.ttft_ms),
            idle_ms=pick(self.stream_idle_timeout_ms, defaults.idle_ms),
            total_ms=pick(self.stream_total_timeout_ms, defaults.total_ms),
        )

    def request_headers(self, request_id_header: str) -> dict[str, str]:
        headers = dict(self.headers)
        if self.request_id:
            headers[request_id_header] = self.request_id
        if self.customer_id:
            headers[CUSTOMER_ID_HEADER] = self.customer_id
        return headers
