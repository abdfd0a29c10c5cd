"""Exception hierarchy for relaystream.

Every error raised by the library derives from ``RelayError`` and carries a
``category``:

  config      - caller misuse detected before any I/O
  transport   - connection failures, timeouts and NDJSON protocol violations
  api         - server-declared errors (non-2xx responses, ``error`` records)
  structured  - structured output could not be decoded or validated
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from relaystream.types import AttemptRecord, StructuredErrorKind

_logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-ModelRelay-Request-Id"
_FALLBACK_REQUEST_ID_HEADERS = ("X-ModelRelay-Chat-Request-Id", "X-Request-Id")


class RelayError(Exception):
    """Base class for all relaystream errors."""

    category = "relay"

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        request_id: str | None = None,
        fields: list[dict[str, Any]] | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.request_id = request_id
        self.fields = fields
        self.data = data


class ConfigError(RelayError):
    """Invalid configuration or API misuse."""

    category = "config"

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(message, status=400, data=data)


class TransportError(RelayError):
    """Network failure or NDJSON protocol violation.

    ``kind`` is one of ``connect``, ``timeout``, ``request``, ``protocol``
    or ``empty_response``.
    """

    category = "transport"

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        retries: int = 0,
    ) -> None:
        super().__init__(message, status=408 if kind == "timeout" else 0)
        self.kind = kind
        self.retries = retries


class StreamTimeoutError(TransportError):
    """A stream deadline fired: ``timeout_kind`` is ``ttft``, ``idle`` or ``total``."""

    def __init__(self, timeout_kind: str, timeout_ms: int) -> None:
        super().__init__(
            f"stream {timeout_kind} timeout after {timeout_ms}ms",
            kind="timeout",
        )
        self.timeout_kind = timeout_kind
        self.timeout_ms = timeout_ms


class APIError(RelayError):
    """Error declared by the server."""

    category = "api"

    def __init__(
        self,
        message: str,
        *,
        status: int,
        code: str | None = None,
        request_id: str | None = None,
        fields: list[dict[str, Any]] | None = None,
        data: Any = None,
    ) -> None:
        super().__init__(
            message,
            status=status,
            code=code,
            request_id=request_id,
            fields=fields,
            data=data,
        )


class StructuredOutputError(RelayError):
    category = "structured"


class StructuredDecodeError(StructuredOutputError):
    """Model output was not JSON on the first and only attempt."""

    def __init__(self, message: str, raw_json: str, attempt: int) -> None:
        super().__init__(
            f"structured output decode error (attempt {attempt}): {message}",
        )
        self.raw_json = raw_json
        self.attempt = attempt


class StructuredExhaustedError(StructuredOutputError):
    """Every structured output attempt failed (or the retry handler gave up)."""

    def __init__(
        self,
        last_raw_json: str,
        all_attempts: list[AttemptRecord],
        final_error: StructuredErrorKind,
    ) -> None:
        super().__init__(
            f"structured output failed after {len(all_attempts)} attempts: "
            f"{final_error.describe()}",
        )
        self.last_raw_json = last_raw_json
        self.all_attempts = all_attempts
        self.final_error = final_error


# ---------------------------------------------------------------------------
# Non-2xx response parsing
# ---------------------------------------------------------------------------

def request_id_from_headers(headers: httpx.Headers) -> str | None:
    return headers.get(REQUEST_ID_HEADER) or None


async def parse_error_response(response: httpx.Response) -> APIError:
    """Build an ``APIError`` from a non-2xx response.

    Reads the body (also for streamed responses) and understands a nested
    ``{"error": {...}}`` object, flat ``message``/``code`` fields and plain
    text bodies.
    """
    request_id = request_id_from_headers(response.headers)
    for name in _FALLBACK_REQUEST_ID_HEADERS:
        request_id = request_id or response.headers.get(name)
    status = response.status_code or 500
    fallback = response.reason_phrase or "Request failed"

    try:
        body = (await response.aread()).decode("utf-8", errors="replace")
    except httpx.HTTPError as e:
        _logger.debug("Could not read error body: %s", e)
        body = ""

    if not body:
        return APIError(fallback, status=status, request_id=request_id)

    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return APIError(body, status=status, request_id=request_id)

    if not isinstance(parsed, dict):
        return APIError(fallback, status=status, request_id=request_id, data=parsed)

    body_request_id = parsed.get("request_id") or parsed.get("requestId")
    err = parsed.get("error")
    if err:
        payload = err if isinstance(err, dict) else {}
        fields = payload.get("fields")
        return APIError(
            payload.get("message") or fallback,
            status=payload.get("status") if isinstance(payload.get("status"), int) else status,
            code=payload.get("code") or None,
            fields=fields if isinstance(fields, list) else None,
            request_id=body_request_id or request_id,
            data=parsed,
        )
    if parsed.get("message") or parsed.get("code"):
        fields = parsed.get("fields")
        return APIError(
            parsed.get("message") or fallback,
            status=status,
            code=parsed.get("code") or None,
            fields=fields if isinstance(fields, list) else None,
            request_id=body_request_id or request_id,
            data=parsed,
        )
    return APIError(fallback, status=status, request_id=request_id, data=parsed)
