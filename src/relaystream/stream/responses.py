"""``ResponsesStream``: typed events from a streamed ``/responses`` call."""

from __future__ import annotations

import logging

from relaystream.errors import TransportError
from relaystream.normalize import is_record, normalize_citations
from relaystream.types import (
    Citation,
    EventType,
    Response,
    ResponseEvent,
    StreamEventKind,
    ToolCall,
    Usage,
)

from .accumulator import ToolCallAccumulator
from .base import NDJSONStream
from .envelope import map_ndjson_event

_logger = logging.getLogger(__name__)


class ResponsesStream(NDJSONStream[ResponseEvent]):
    """Async iterator of ``ResponseEvent`` objects.

    Usage::

        async with await client.stream(request) as stream:
            async for event in stream:
                if event.type is EventType.MESSAGE_DELTA:
                    print(event.text_delta, end="")

    or ``response = await stream.collect()`` to aggregate the whole turn.
    """

    def _map_line(self, line: str) -> ResponseEvent | None:
        return map_ndjson_event(line, self.request_id)

    async def _on_item(self, item: ResponseEvent) -> None:
        if item.response_id:
            self.context["response_id"] = item.response_id
        if item.model:
            self.context["model"] = item.model
        if item.type.is_content:
            await self._record_first_token()
        await self._publish(StreamEventKind.STREAM_EVENT, event=item)
        if item.type is EventType.MESSAGE_STOP and item.usage is not None:
            await self._publish(StreamEventKind.USAGE, usage=item.usage)

    async def collect(self) -> Response:
        """Drain the stream and fold it into one ``Response``.

        Text is the concatenation of ``message_delta`` deltas.  The stream
        must have produced a response id, usage and a model; the model falls
        back to the requested one when no record names it.
        """
        response_id = ""
        model: str | None = None
        provider: str | None = None
        stop_reason: str | None = None
        usage: Usage | None = None
        citations: list[Citation] | None = None
        text_parts: list[str] = []
        accumulator = ToolCallAccumulator()
        completed_calls: list[ToolCall] = []

        async with self:
            async for evt in self:
                if evt.response_id:
                    response_id = evt.response_id
                if evt.model:
                    model = evt.model
                if evt.type is EventType.MESSAGE_DELTA and evt.text_delta:
                    text_parts.append(evt.text_delta)
                if evt.type in (EventType.TOOL_USE_START, EventType.TOOL_USE_DELTA):
                    if evt.tool_call_delta is not None:
                        accumulator.process_delta(evt.tool_call_delta)
                if evt.type is EventType.TOOL_USE_STOP and evt.tool_calls:
                    completed_calls.extend(evt.tool_calls)
                if evt.type is EventType.MESSAGE_STOP:
                    stop_reason = evt.stop_reason
                    usage = evt.usage
                    citations = normalize_citations(evt.data.get("citations")) or citations
                raw_provider = evt.data.get("provider") if is_record(evt.data) else None
                if isinstance(raw_provider, str) and raw_provider.strip():
                    provider = raw_provider

        if not response_id:
            raise TransportError("stream ended without response id", kind="protocol")
        if usage is None:
            raise TransportError("stream ended without usage", kind="protocol")

        model = model or self.context.get("model")
        if not model:
            raise TransportError("stream ended without model", kind="protocol")
        tool_calls = accumulator.get_tool_calls() or completed_calls
        message: dict = {
            "type": "message",
            "role": "assistant",
            "content": [{"type": "text", "text": "".join(text_parts)}],
        }
        if tool_calls:
            message["tool_calls"] = tool_calls

        return Response(
            id=response_id,
            model=model,
            usage=usage,
            output=[message],
            provider=provider,
            stop_reason=stop_reason,
            request_id=self.request_id,
            citations=citations,
        )
