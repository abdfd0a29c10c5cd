"""relaystream: NDJSON streaming client for the ModelRelay responses API."""

from relaystream.client import ResponsesClient
from relaystream.config import ClientConfig, load_config
from relaystream.errors import (
    APIError,
    ConfigError,
    RelayError,
    StreamTimeoutError,
    StructuredDecodeError,
    StructuredExhaustedError,
    StructuredOutputError,
    TransportError,
)
from relaystream.events.bus import EventBus
from relaystream.request import RequestOptions, ResponsesRequest, assistant_item, system_item, user_item
from relaystream.stream import ResponsesStream, StreamTimeouts, StructuredJSONStream
from relaystream.structured import DefaultRetryHandler, RetryHandler, output_format_from_schema
from relaystream.transport import HTTPTransport
from relaystream.types import (
    EventType,
    Response,
    ResponseEvent,
    StructuredEventType,
    StructuredJSONEvent,
    StructuredResult,
    ToolCall,
    Usage,
)

__version__ = "0.3.0"

__all__ = [
    "APIError",
    "ClientConfig",
    "ConfigError",
    "DefaultRetryHandler",
    "EventBus",
    "EventType",
    "HTTPTransport",
    "RelayError",
    "RequestOptions",
    "Response",
    "ResponseEvent",
    "ResponsesClient",
    "ResponsesRequest",
    "ResponsesStream",
    "RetryHandler",
    "StreamTimeoutError",
    "StreamTimeouts",
    "StructuredDecodeError",
    "StructuredEventType",
    "StructuredExhaustedError",
    "StructuredJSONEvent",
    "StructuredJSONStream",
    "StructuredOutputError",
    "StructuredResult",
    "ToolCall",
    "TransportError",
    "Usage",
    "assistant_item",
    "load_config",
    "output_format_from_schema",
    "system_item",
    "user_item",
]
