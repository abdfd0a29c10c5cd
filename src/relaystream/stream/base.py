"""Shared NDJSON read loop for response streams.

The loop is an explicit state machine driven by ``__anext__``::

    idle -> iterating -> closed | errored

Each call pulls at most what is needed to produce the next item: buffered
complete lines are mapped first, otherwise one network chunk is read while
racing the ``StreamWatchdog``.  ``closed`` and ``errored`` are sticky;
iterating a finished stream simply ends.
"""

from __future__ import annotations

import asyncio
import codecs
import collections
import logging
from typing import Any, AsyncIterator, Generic, TypeVar

import httpx

from relaystream.errors import ConfigError, StreamTimeoutError, TransportError
from relaystream.events.bus import EventBus
from relaystream.types import StreamEvent, StreamEventKind

from .framing import consume_ndjson_buffer
from .watchdog import StreamTimeouts, StreamWatchdog

_logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")

IDLE = "idle"
ITERATING = "iterating"
CLOSED = "closed"
ERRORED = "errored"


class NDJSONStream(Generic[ItemT]):
    """Base class: single-pass async iterator over one streamed response.

    The stream owns *response* exclusively and closes it on every exit path
    (end of stream, error, timeout, ``aclose()`` or ``async with`` exit).
    Consumers that stop early should use ``async with stream:`` or call
    ``aclose()``.
    """

    def __init__(
        self,
        response: httpx.Response,
        request_id: str | None = None,
        *,
        timeouts: StreamTimeouts | None = None,
        started_at: float | None = None,
        bus: EventBus | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if response.is_stream_consumed or response.is_closed:
            raise ConfigError("streaming response is missing a body")
        self._response = response
        self.request_id = request_id
        self.context: dict[str, Any] = dict(context or {})
        self._bus = bus
        self._watchdog = StreamWatchdog(timeouts or StreamTimeouts(), started_at)
        self._started_at = started_at
        self._state = IDLE
        self._chunks: AsyncIterator[bytes] | None = None
        self._read_task: asyncio.Future[bytes | None] | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._lines: collections.deque[str] = collections.deque()
        self._eof = False
        self._first_token_recorded = False
        self.first_token_latency_ms: float | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state in (CLOSED, ERRORED)

    def __aiter__(self) -> NDJSONStream[ItemT]:
        return self

    async def __aenter__(self) -> NDJSONStream[ItemT]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the stream and release the response.  Safe to call repeatedly."""
        if self._state in (CLOSED, ERRORED):
            return
        await self._close(CLOSED)

    async def cancel(self) -> None:
        """Alias of ``aclose()``."""
        await self.aclose()

    async def __anext__(self) -> ItemT:
        if self._state in (CLOSED, ERRORED):
            raise StopAsyncIteration
        if self._state == IDLE:
            self._state = ITERATING
            if self._started_at is None:
                self._started_at = asyncio.get_running_loop().time()
            self._chunks = self._response.aiter_bytes()
            self._watchdog.start()

        try:
            while True:
                if self._state != ITERATING:
                    raise StopAsyncIteration
                if self._lines:
                    item = self._map_line(self._lines.popleft())
                    if item is None:
                        continue
                    await self._on_item(item)
                    return item
                if self._eof:
                    self._on_eof()
                    await self._close(CLOSED)
                    raise StopAsyncIteration
                await self._pump()
        except (StopAsyncIteration, asyncio.CancelledError):
            if self._state == ITERATING:
                await self._close(CLOSED)
            raise
        except Exception as e:
            await self._fail(e)
            raise

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def _map_line(self, line: str) -> ItemT | None:
        raise NotImplementedError

    async def _on_item(self, item: ItemT) -> None:
        """Called before *item* is handed to the consumer."""

    def _on_eof(self) -> None:
        """Called once the body and the line buffer are exhausted."""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _pump(self) -> None:
        """Read one chunk (or EOF) and frame it into ``self._lines``."""
        chunk = await self._read_chunk()
        if self._state != ITERATING:
            return
        if chunk is None:
            self._buffer += self._decode(b"", final=True)
            records, _ = consume_ndjson_buffer(self._buffer, flush=True)
            self._buffer = ""
            self._eof = True
        else:
            self._watchdog.bytes_received()
            self._buffer += self._decode(chunk)
            records, self._buffer = consume_ndjson_buffer(self._buffer)
        self._lines.extend(records)

    def _decode(self, data: bytes, final: bool = False) -> str:
        try:
            return self._decoder.decode(data, final)
        except UnicodeDecodeError as e:
            raise TransportError(f"invalid UTF-8 in stream body: {e.reason}", kind="protocol") from e

    async def _next_chunk(self) -> bytes | None:
        assert self._chunks is not None
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def _read_chunk(self) -> bytes | None:
        """Await the next chunk while racing the watchdog deadlines."""
        read = asyncio.ensure_future(self._next_chunk())
        self._read_task = read
        tripped = self._watchdog.tripped
        try:
            await asyncio.wait({read, tripped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            read.cancel()
            raise
        finally:
            self._read_task = None

        if read.done():
            if read.cancelled():
                # aclose() from another task
                return None
            try:
                return read.result()
            except httpx.TimeoutException as e:
                raise TransportError(f"stream read timed out: {e}", kind="timeout") from e
            except httpx.HTTPError as e:
                raise TransportError(f"stream read failed: {e}", kind="request") from e

        kind = tripped.result()
        read.cancel()
        await asyncio.gather(read, return_exceptions=True)
        raise StreamTimeoutError(kind, self._watchdog.timeouts.ms_for(kind))

    def _elapsed_ms(self) -> float:
        if self._started_at is None:
            return 0.0
        return (asyncio.get_running_loop().time() - self._started_at) * 1000

    async def _record_first_token(self, error: BaseException | None = None) -> None:
        """Record time-to-first-token once (also when the stream fails first)."""
        if self._first_token_recorded:
            return
        self._first_token_recorded = True
        self._watchdog.first_token()
        self.first_token_latency_ms = self._elapsed_ms()
        _logger.debug(
            "First token after %.1fms (request_id=%s, error=%s)",
            self.first_token_latency_ms, self.request_id, error,
        )
        await self._publish(
            StreamEventKind.STREAM_FIRST_TOKEN,
            latency_ms=self.first_token_latency_ms,
            error=str(error) if error is not None else None,
        )

    async def _publish(self, kind: StreamEventKind, **data: Any) -> None:
        if self._bus is not None:
            payload = {**self.context, "request_id": self.request_id, **data}
            await self._bus.emit(StreamEvent(kind=kind, data=payload))

    async def _fail(self, error: Exception) -> None:
        _logger.debug("Stream failed (request_id=%s): %s", self.request_id, error)
        await self._close(ERRORED)
        await self._record_first_token(error)
        await self._publish(StreamEventKind.STREAM_ERROR, error=error)

    async def _close(self, state: str) -> None:
        self._state = state
        self._watchdog.stop()
        read = self._read_task
        if read is not None and not read.done():
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
        if self._chunks is not None and hasattr(self._chunks, "aclose"):
            try:
                await self._chunks.aclose()
            except RuntimeError:
                # still running in the reader task; closing the response ends it
                pass
        await self._response.aclose()
        await self._publish(StreamEventKind.STREAM_CLOSED, state=state)
