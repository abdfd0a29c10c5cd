"""``ResponsesClient``: the ``/responses`` API over an ``HTTPTransport``.

Exposes ``create()`` (buffered JSON), ``stream()`` / ``stream_json()``
(NDJSON event streams) and the structured-output helpers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from relaystream.config import ClientConfig
from relaystream.errors import (
    REQUEST_ID_HEADER,
    APIError,
    ConfigError,
    TransportError,
    parse_error_response,
    request_id_from_headers,
)
from relaystream.events.bus import EventBus
from relaystream.normalize import normalize_response
from relaystream.request import RESPONSES_PATH, RequestOptions, ResponsesRequest
from relaystream.stream import ResponsesStream, StructuredJSONStream
from relaystream.structured import RetryHandler, output_format_from_schema, run_structured
from relaystream.transport import HTTPTransport
from relaystream.types import Response, StreamEventKind, StructuredResult

_logger = logging.getLogger(__name__)

NDJSON_ACCEPT = "application/x-ndjson"
_NDJSON_TYPES = ("application/x-ndjson", "application/ndjson")


async def _ensure_ndjson(response: httpx.Response) -> None:
    """Reject a streaming response that is not NDJSON (closing it first)."""
    content_type = response.headers.get("content-type", "").lower()
    if any(t in content_type for t in _NDJSON_TYPES):
        return
    await response.aclose()
    raise TransportError(
        f"expected NDJSON stream, got content-type {content_type or '<missing>'!r}",
        kind="protocol",
    )


class ResponsesClient:
    """Client for the ``/responses`` endpoint.

    Parameters
    ----------
    transport:
        HTTP transport (auth, connection-level retry).
    bus:
        Optional ``EventBus`` receiving request and stream events.
    defaults:
        Client defaults (default model, stream deadlines, structured retries).
    """

    def __init__(
        self,
        transport: HTTPTransport,
        *,
        bus: EventBus | None = None,
        defaults: ClientConfig | None = None,
    ) -> None:
        self._transport = transport
        self._bus = bus
        self._defaults = defaults or ClientConfig()

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> ResponsesClient:
        return cls(
            HTTPTransport.from_config(config, http_client=http_client),
            bus=bus,
            defaults=config,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> ResponsesClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _body(self, request: ResponsesRequest) -> dict[str, Any]:
        if not request.input:
            raise ConfigError("request input is required")
        body = request.to_wire()
        if "model" not in body and self._defaults.default_model:
            body["model"] = self._defaults.default_model
        return body

    async def _publish(self, kind: StreamEventKind, **data: Any) -> None:
        if self._bus is not None:
            await self._bus.publish(kind, **data)

    async def _open_stream(
        self, request: ResponsesRequest, options: RequestOptions,
    ) -> tuple[httpx.Response, str | None, float]:
        body = self._body(request)
        await self._publish(
            StreamEventKind.REQUEST_STARTED,
            model=body.get("model"), stream=True, request_id=options.request_id,
        )
        started_at = asyncio.get_running_loop().time()
        response = await self._transport.request(
            "POST",
            RESPONSES_PATH,
            json=body,
            headers=options.request_headers(REQUEST_ID_HEADER),
            accept=NDJSON_ACCEPT,
            stream=True,
            timeout_ms=options.timeout_ms,
        )
        if not response.is_success:
            try:
                error = await parse_error_response(response)
            finally:
                await response.aclose()
            raise error
        await _ensure_ndjson(response)
        request_id = request_id_from_headers(response.headers) or options.request_id
        _logger.debug("Stream opened (request_id=%s)", request_id)
        return response, request_id, started_at

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self, request: ResponsesRequest, options: RequestOptions | None = None,
    ) -> Response:
        """Send a non-streaming request and return the normalized response."""
        options = options or RequestOptions()
        body = self._body(request)
        await self._publish(
            StreamEventKind.REQUEST_STARTED,
            model=body.get("model"), stream=False, request_id=options.request_id,
        )
        resp = await self._transport.request(
            "POST",
            RESPONSES_PATH,
            json=body,
            headers=options.request_headers(REQUEST_ID_HEADER),
            accept="application/json",
            timeout_ms=options.timeout_ms,
        )
        try:
            if not resp.is_success:
                raise await parse_error_response(resp)
            request_id = request_id_from_headers(resp.headers) or options.request_id
            try:
                payload = resp.json()
            except json.JSONDecodeError as e:
                raise APIError(
                    "failed to parse response JSON",
                    status=resp.status_code,
                    request_id=request_id,
                    data=resp.text,
                ) from e
        finally:
            await resp.aclose()

        response = normalize_response(payload, request_id)
        await self._publish(
            StreamEventKind.USAGE,
            usage=response.usage, model=response.model, request_id=request_id,
        )
        return response

    async def stream(
        self, request: ResponsesRequest, options: RequestOptions | None = None,
    ) -> ResponsesStream:
        """Open a streaming request and return its event stream."""
        options = options or RequestOptions()
        response, request_id, started_at = await self._open_stream(request, options)
        return ResponsesStream(
            response,
            request_id,
            timeouts=options.stream_timeouts(self._defaults.stream.to_timeouts()),
            started_at=started_at,
            bus=self._bus,
            context={"model": request.model or self._defaults.default_model or None},
        )

    async def stream_json(
        self, request: ResponsesRequest, options: RequestOptions | None = None,
    ) -> StructuredJSONStream[Any]:
        """Open a structured streaming request.

        The request must carry a ``json_schema`` output format.
        """
        output_format = request.output_format or {}
        if output_format.get("type") != "json_schema":
            raise ConfigError("stream_json requires output_format of type json_schema")
        options = options or RequestOptions()
        response, request_id, started_at = await self._open_stream(request, options)
        return StructuredJSONStream(
            response,
            request_id,
            timeouts=options.stream_timeouts(self._defaults.stream.to_timeouts()),
            started_at=started_at,
            bus=self._bus,
            context={"model": request.model or self._defaults.default_model or None},
        )

    async def structured(
        self,
        schema: Any,
        request: ResponsesRequest,
        options: RequestOptions | None = None,
        *,
        max_retries: int | None = None,
        schema_name: str | None = None,
        retry_handler: RetryHandler | None = None,
    ) -> StructuredResult[Any]:
        """Request output matching *schema*, retrying on invalid answers."""
        defaults = self._defaults.structured

        async def create(req: ResponsesRequest) -> Response:
            return await self.create(req, options)

        return await run_structured(
            create,
            schema,
            request,
            max_retries=defaults.max_retries if max_retries is None else max_retries,
            schema_name=schema_name or defaults.schema_name,
            retry_handler=retry_handler,
            bus=self._bus,
        )

    async def stream_structured(
        self,
        schema: Any,
        request: ResponsesRequest,
        options: RequestOptions | None = None,
        *,
        schema_name: str | None = None,
    ) -> StructuredJSONStream[Any]:
        """Stream output constrained to *schema* (no retries)."""
        name = schema_name or self._defaults.structured.schema_name
        return await self.stream_json(
            request.with_output_format(output_format_from_schema(schema, name)),
            options,
        )
