"""``StructuredJSONStream``: schema-constrained JSON over NDJSON.

Only ``update``, ``completion`` and ``error`` records matter here; anything
else (``start``, ``tool_use_*``, ``ping``...) is skipped.  Exactly one
terminal record (``completion`` or ``error``) must arrive before the body
ends.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, TypeVar

from relaystream.errors import APIError, TransportError
from relaystream.types import StreamEventKind, StructuredEventType, StructuredJSONEvent

from .base import NDJSONStream
from .envelope import parse_ndjson_record

_logger = logging.getLogger(__name__)

T = TypeVar("T")

_RECOGNIZED = {"update", "completion", "error"}


class StructuredJSONStream(NDJSONStream[StructuredJSONEvent[T]], Generic[T]):
    """Async iterator of ``StructuredJSONEvent`` objects.

    An ``error`` record raises ``APIError`` carrying the server's code,
    message and status.  Ending without ``completion`` or ``error`` raises
    ``TransportError``.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._saw_terminal = False

    def _map_line(self, line: str) -> StructuredJSONEvent[T] | None:
        record = parse_ndjson_record(line)
        if record is None:
            return None
        record_type, payload = record
        if record_type not in _RECOGNIZED:
            return None

        if record_type == "error":
            self._saw_terminal = True
            message = payload.get("message")
            code = payload.get("code")
            status = payload.get("status")
            raise APIError(
                message if isinstance(message, str) and message.strip() else "stream error",
                status=status if isinstance(status, int) and not isinstance(status, bool) else 500,
                code=code if isinstance(code, str) else None,
                request_id=self.request_id,
                data=payload,
            )
        if record_type == "completion":
            self._saw_terminal = True

        fields = payload.get("complete_fields")
        complete_fields = frozenset(
            f for f in fields if isinstance(f, str)
        ) if isinstance(fields, list) else frozenset()
        return StructuredJSONEvent(
            type=StructuredEventType(record_type),
            payload=payload.get("payload"),
            complete_fields=complete_fields,
            request_id=self.request_id,
        )

    async def _on_item(self, item: StructuredJSONEvent[T]) -> None:
        await self._record_first_token()
        await self._publish(StreamEventKind.STREAM_EVENT, event=item)

    def _on_eof(self) -> None:
        if not self._saw_terminal:
            raise TransportError(
                "structured stream ended without completion or error",
                kind="protocol",
            )

    async def collect(self) -> T | None:
        """Drain the stream and return the ``completion`` payload."""
        result: T | None = None
        async with self:
            async for evt in self:
                if evt.type is StructuredEventType.COMPLETION:
                    result = evt.payload
        return result
