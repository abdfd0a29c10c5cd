"""Shared data types for relaystream."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Usage / citations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Usage:
    """Token usage reported by the server."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int | None = None

    def __post_init__(self) -> None:
        if self.total_tokens is None:
            object.__setattr__(
                self, "total_tokens", self.input_tokens + self.output_tokens,
            )


@dataclass(frozen=True)
class Citation:
    url: str | None = None
    title: str | None = None


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

class ToolType(str, enum.Enum):
    FUNCTION = "function"
    WEB = "web"
    X_SEARCH = "x_search"
    CODE_EXECUTION = "code_execution"

    @classmethod
    def coerce(cls, value: Any) -> ToolType:
        """Map a wire string to a ToolType; unknown values become FUNCTION."""
        try:
            return cls(value)
        except ValueError:
            return cls.FUNCTION


@dataclass
class FunctionCall:
    """Function name plus its JSON-encoded argument string."""

    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str = ""
    type: ToolType = ToolType.FUNCTION
    function: FunctionCall | None = None


@dataclass(frozen=True)
class ToolCallDelta:
    """One streamed fragment of a tool call.

    ``function.arguments`` is a piece of a JSON string that must be
    concatenated with the fragments for the same ``index``.
    """

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: FunctionCall | None = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Normalized event types produced by ``ResponsesStream``."""

    MESSAGE_START = "message_start"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    TOOL_USE_START = "tool_use_start"
    TOOL_USE_DELTA = "tool_use_delta"
    TOOL_USE_STOP = "tool_use_stop"
    PING = "ping"
    CUSTOM = "custom"

    @property
    def is_content(self) -> bool:
        """True for message and tool events (these count as a first token)."""
        return self not in (EventType.PING, EventType.CUSTOM)


@dataclass(frozen=True)
class ResponseEvent:
    """One event per non-keepalive NDJSON record.

    ``type`` is the discriminator; the optional fields are populated only for
    the variants that carry them.
    """

    type: EventType
    event: str
    data: dict[str, Any]
    raw: str
    text_delta: str | None = None
    tool_call_delta: ToolCallDelta | None = None
    tool_calls: list[ToolCall] | None = None
    response_id: str | None = None
    model: str | None = None
    stop_reason: str | None = None
    usage: Usage | None = None
    request_id: str | None = None


class StructuredEventType(enum.Enum):
    UPDATE = "update"
    COMPLETION = "completion"
    ERROR = "error"


@dataclass(frozen=True)
class StructuredJSONEvent(Generic[T]):
    """Event of a structured (schema-constrained) JSON stream.

    ``complete_fields`` holds the field paths the server reports as fully
    materialized in ``payload``.
    """

    type: StructuredEventType
    payload: T | None = None
    complete_fields: frozenset[str] = frozenset()
    request_id: str | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass
class Response:
    """Aggregate result of a ``/responses`` call (buffered or collected)."""

    id: str
    model: str | None
    usage: Usage
    output: list[dict[str, Any]] = field(default_factory=list)
    provider: str | None = None
    stop_reason: str | None = None
    request_id: str | None = None
    citations: list[Citation] | None = None

    @property
    def text(self) -> str:
        """Concatenated assistant text parts."""
        parts: list[str] = []
        for item in self.output:
            if item.get("type") != "message" or item.get("role") != "assistant":
                continue
            for part in item.get("content") or []:
                if isinstance(part, dict) and part.get("type") == "text":
                    parts.append(str(part.get("text", "")))
        return "".join(parts)

    @property
    def tool_calls(self) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for item in self.output:
            if item.get("type") == "message" and item.get("role") == "assistant":
                calls.extend(
                    tc for tc in item.get("tool_calls") or []
                    if isinstance(tc, ToolCall)
                )
        return calls


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationIssue:
    """A single field-level validation issue (``path`` is dotted)."""

    message: str
    path: str | None = None


@dataclass(frozen=True)
class DecodeFailure:
    """The model output was not valid JSON."""

    message: str

    def describe(self) -> str:
        return self.message


@dataclass(frozen=True)
class ValidationFailure:
    """The model output was JSON but did not match the schema."""

    issues: tuple[ValidationIssue, ...]

    def describe(self) -> str:
        return "; ".join(f"{i.path or ''}: {i.message}" for i in self.issues)


StructuredErrorKind = Union[DecodeFailure, ValidationFailure]


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    raw_json: str
    error: StructuredErrorKind


@dataclass(frozen=True)
class StructuredResult(Generic[T]):
    value: T
    attempts: int
    request_id: str | None = None


# ---------------------------------------------------------------------------
# Observability events
# ---------------------------------------------------------------------------

class StreamEventKind(enum.Enum):
    """Events published on the ``EventBus`` by clients and streams."""

    REQUEST_STARTED = "request.started"
    STREAM_EVENT = "stream.event"
    STREAM_FIRST_TOKEN = "stream.first_token"
    STREAM_ERROR = "stream.error"
    STREAM_CLOSED = "stream.closed"
    USAGE = "usage"
    STRUCTURED_RETRY = "structured.retry"


@dataclass
class StreamEvent:
    """Event emitted via the EventBus."""

    kind: StreamEventKind
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def request_id(self) -> str | None:
        rid = self.data.get("request_id")
        return rid if isinstance(rid, str) and rid else None
