"""NDJSON framing, envelope mapping and the stream consumers."""

from relaystream.stream.accumulator import ToolCallAccumulator
from relaystream.stream.base import NDJSONStream
from relaystream.stream.envelope import map_ndjson_event, parse_ndjson_record
from relaystream.stream.framing import consume_ndjson_buffer
from relaystream.stream.responses import ResponsesStream
from relaystream.stream.structured import StructuredJSONStream
from relaystream.stream.watchdog import StreamTimeouts, StreamWatchdog

__all__ = [
    "NDJSONStream",
    "ResponsesStream",
    "StreamTimeouts",
    "StreamWatchdog",
    "StructuredJSONStream",
    "ToolCallAccumulator",
    "consume_ndjson_buffer",
    "map_ndjson_event",
    "parse_ndjson_record",
]
