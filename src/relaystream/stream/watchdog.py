"""Stream deadlines: time-to-first-token, idle and total.

Each deadline is an independent ``loop.call_later`` timer.  When one fires
it resolves the ``tripped`` future with its kind; the stream read loop races
that future against the pending network read and cancels the read when the
watchdog wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

_logger = logging.getLogger(__name__)

TTFT = "ttft"
IDLE = "idle"
TOTAL = "total"


@dataclass(frozen=True)
class StreamTimeouts:
    """Stream deadlines in milliseconds.  ``0`` disables a deadline.

    ttft_ms:
        From request dispatch until the first message/tool event.
    idle_ms:
        Maximum gap between received bytes (keepalives count).
    total_ms:
        From request dispatch until the stream must have ended.
    """

    ttft_ms: int = 0
    idle_ms: int = 0
    total_ms: int = 0

    @property
    def enabled(self) -> bool:
        return bool(self.ttft_ms or self.idle_ms or self.total_ms)

    def ms_for(self, kind: str) -> int:
        return {TTFT: self.ttft_ms, IDLE: self.idle_ms, TOTAL: self.total_ms}[kind]


class StreamWatchdog:
    """Owns the three deadline timers of one stream.

    Parameters
    ----------
    timeouts:
        The configured deadlines.
    started_at:
        ``loop.time()`` at request dispatch.  TTFT and total deadlines are
        measured from here; defaults to the moment ``start()`` runs.
    """

    def __init__(self, timeouts: StreamTimeouts, started_at: float | None = None) -> None:
        self.timeouts = timeouts
        self._started_at = started_at
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tripped: asyncio.Future[str] | None = None

    @property
    def tripped(self) -> asyncio.Future[str]:
        """Future resolved with the kind of the first deadline to fire."""
        if self._tripped is None:
            raise RuntimeError("watchdog not started")
        return self._tripped

    def start(self) -> None:
        """Arm all enabled timers.  Must run inside the event loop."""
        self._loop = asyncio.get_running_loop()
        self._tripped = self._loop.create_future()
        now = self._loop.time()
        started = self._started_at if self._started_at is not None else now
        if self.timeouts.ttft_ms > 0:
            self._arm(TTFT, started + self.timeouts.ttft_ms / 1000 - now)
        if self.timeouts.total_ms > 0:
            self._arm(TOTAL, started + self.timeouts.total_ms / 1000 - now)
        if self.timeouts.idle_ms > 0:
            self._arm(IDLE, self.timeouts.idle_ms / 1000)

    def bytes_received(self) -> None:
        """Restart the idle deadline."""
        if self._loop is not None and self.timeouts.idle_ms > 0:
            self._arm(IDLE, self.timeouts.idle_ms / 1000)

    def first_token(self) -> None:
        """Disarm the TTFT deadline."""
        handle = self._handles.pop(TTFT, None)
        if handle is not None:
            handle.cancel()

    def stop(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def _arm(self, kind: str, delay: float) -> None:
        assert self._loop is not None
        previous = self._handles.pop(kind, None)
        if previous is not None:
            previous.cancel()
        self._handles[kind] = self._loop.call_later(max(0.0, delay), self._fire, kind)

    def _fire(self, kind: str) -> None:
        self._handles.pop(kind, None)
        if self._tripped is not None and not self._tripped.done():
            _logger.debug("Stream %s deadline fired", kind)
            self._tripped.set_result(kind)
