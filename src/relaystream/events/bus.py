"""Async pub/sub EventBus for request and stream observability.

Clients and streams publish ``StreamEvent`` records tagged with the request
id they belong to.  Subscribers can listen to one kind, to every kind
(``"*"``), and optionally to a single request::

    bus.subscribe(StreamEventKind.STREAM_FIRST_TOKEN, on_ttft, request_id="req-1")
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from relaystream.types import StreamEvent, StreamEventKind

_logger = logging.getLogger(__name__)

# Sentinel used for wildcard subscriptions (receive all events)
_WILDCARD = "*"

Handler = Callable[[StreamEvent], Any]


@dataclass(frozen=True)
class _Subscription:
    handler: Handler
    request_id: str | None = None

    def accepts(self, event: StreamEvent) -> bool:
        return self.request_id is None or event.request_id == self.request_id


class EventBus:
    """Lightweight async pub/sub bus for stream lifecycle events.

    Handlers can be sync or async.  ``emit()`` fans out to matching handlers
    concurrently; a failing handler is logged and never breaks the stream
    that published the event.  The last ``max_history`` events are kept for
    inspection with ``events_for()``.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._history: list[StreamEvent] = []
        self._max_history = max_history

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(
        self,
        kind: StreamEventKind | str,
        handler: Handler,
        *,
        request_id: str | None = None,
    ) -> None:
        """Register *handler* for *kind* (or ``"*"``), optionally for one request."""
        self._subscriptions.setdefault(self._key(kind), []).append(
            _Subscription(handler, request_id)
        )

    def unsubscribe(self, kind: StreamEventKind | str, handler: Handler) -> None:
        """Remove every subscription of *handler* to *kind*."""
        key = self._key(kind)
        remaining = [s for s in self._subscriptions.get(key, []) if s.handler != handler]
        if remaining:
            self._subscriptions[key] = remaining
        else:
            self._subscriptions.pop(key, None)

    async def emit(self, event: StreamEvent) -> None:
        """Deliver *event* to the matching kind and wildcard subscriptions."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        subscriptions = list(self._subscriptions.get(self._key(event.kind), []))
        subscriptions.extend(self._subscriptions.get(_WILDCARD, []))
        handlers = [s.handler for s in subscriptions if s.accepts(event)]
        if not handlers:
            return

        await asyncio.gather(
            *(self._call_handler(h, event) for h in handlers),
            return_exceptions=True,
        )

    async def publish(self, kind: StreamEventKind, **data: Any) -> None:
        """Build a ``StreamEvent`` of *kind* from keyword data and emit it."""
        if not isinstance(kind, StreamEventKind):
            raise TypeError(f"publish() needs a StreamEventKind, got {kind!r}")
        await self.emit(StreamEvent(kind=kind, data=data))

    def events_for(
        self,
        request_id: str | None = None,
        kind: StreamEventKind | None = None,
    ) -> list[StreamEvent]:
        """Recorded events, filtered by request id and/or kind."""
        return [
            e for e in self._history
            if (request_id is None or e.request_id == request_id)
            and (kind is None or e.kind is kind)
        ]

    @property
    def history(self) -> list[StreamEvent]:
        """Return a copy of the event history."""
        return list(self._history)

    def clear(self) -> None:
        """Remove all subscriptions and history."""
        self._subscriptions.clear()
        self._history.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _key(kind: StreamEventKind | str) -> str:
        if isinstance(kind, StreamEventKind):
            return kind.value
        return str(kind)

    @staticmethod
    async def _call_handler(handler: Handler, event: StreamEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for %s (request_id=%s)",
                getattr(handler, "__name__", handler),
                event.kind.value,
                event.request_id,
            )
