"""Structured output: schema injection, validation and the retry loop.

Schemas are pydantic models (or any type ``pydantic.TypeAdapter`` accepts).
The loop asks the model for JSON matching the schema and, when the answer
does not decode or validate, feeds the failed output back together with a
corrective turn and tries again.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from relaystream.errors import StructuredDecodeError, StructuredExhaustedError
from relaystream.events.bus import EventBus
from relaystream.normalize import extract_assistant_text
from relaystream.request import ResponsesRequest, assistant_item, user_item
from relaystream.types import (
    AttemptRecord,
    DecodeFailure,
    Response,
    StreamEventKind,
    StructuredErrorKind,
    StructuredResult,
    ValidationFailure,
    ValidationIssue,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")

CreateFn = Callable[[ResponsesRequest], Awaitable[Response]]


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def _adapter(schema: Any) -> TypeAdapter:
    if isinstance(schema, TypeAdapter):
        return schema
    return TypeAdapter(schema)


def output_format_from_schema(schema: Any, name: str = "response") -> dict[str, Any]:
    """Build a strict ``json_schema`` output format for *schema*."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": _adapter(schema).json_schema(),
            "strict": True,
        },
    }


def validate_with_schema(schema: Any, data: Any) -> tuple[Any, list[ValidationIssue]]:
    """Validate *data* against *schema*.

    Returns ``(value, [])`` on success and ``(None, issues)`` on failure.
    Issue paths are the pydantic error location joined with ``.``.
    """
    try:
        return _adapter(schema).validate_python(data), []
    except ValidationError as e:
        issues = [
            ValidationIssue(
                message=err.get("msg", "invalid value"),
                path=".".join(str(p) for p in err.get("loc", ())) or None,
            )
            for err in e.errors()
        ]
        return None, issues


# ---------------------------------------------------------------------------
# Retry handlers
# ---------------------------------------------------------------------------

class RetryHandler(Protocol):
    """Decides how to continue after a failed structured attempt.

    Return the corrective input items to append, or ``None`` (or an empty
    list) to give up.
    """

    def on_validation_error(
        self,
        attempt: int,
        raw_json: str,
        error: StructuredErrorKind,
        original_input: list[dict[str, Any]],
    ) -> list[dict[str, Any]] | None: ...


class DefaultRetryHandler:
    """Always asks once more, quoting the error back to the model."""

    def on_validation_error(
        self,
        attempt: int,
        raw_json: str,
        error: StructuredErrorKind,
        original_input: list[dict[str, Any]],
    ) -> list[dict[str, Any]] | None:
        correction = (
            "The previous response did not match the expected schema. "
            f"Error: {error.describe()}. "
            "Please provide a response that matches the schema exactly."
        )
        return [user_item(correction)]


# ---------------------------------------------------------------------------
# Retry loop
# ---------------------------------------------------------------------------

async def run_structured(
    create: CreateFn,
    schema: Any,
    request: ResponsesRequest,
    *,
    max_retries: int = 0,
    schema_name: str | None = None,
    retry_handler: RetryHandler | None = None,
    bus: EventBus | None = None,
) -> StructuredResult[Any]:
    """Request structured output and validate it, retrying on failure.

    Attempts are sequential, at most ``max(1, max_retries + 1)``.  Each retry
    sends the original input followed by the failed assistant output and the
    handler's corrective turns.

    Raises
    ------
    StructuredDecodeError
        The first answer was not JSON and ``max_retries`` is 0.
    StructuredExhaustedError
        The handler declined or every attempt failed.
    """
    adapter = _adapter(schema)
    handler = retry_handler or DefaultRetryHandler()
    max_attempts = max(1, max_retries + 1)
    output_format = output_format_from_schema(
        adapter, schema_name or "response",
    )
    original_input = list(request.input)
    attempts: list[AttemptRecord] = []
    current = request.with_output_format(output_format)

    for attempt in range(1, max_attempts + 1):
        response = await create(current)
        raw_json = extract_assistant_text(response)

        error: StructuredErrorKind
        try:
            parsed = json.loads(raw_json)
        except json.JSONDecodeError as e:
            error = DecodeFailure(str(e))
            attempts.append(AttemptRecord(attempt, raw_json, error))
            if attempt == 1 and max_retries == 0:
                raise StructuredDecodeError(str(e), raw_json, attempt) from e
        else:
            value, issues = validate_with_schema(adapter, parsed)
            if not issues:
                return StructuredResult(
                    value=value, attempts=attempt, request_id=response.request_id,
                )
            error = ValidationFailure(tuple(issues))
            attempts.append(AttemptRecord(attempt, raw_json, error))

        turns = handler.on_validation_error(attempt, raw_json, error, original_input)
        if not turns:
            raise StructuredExhaustedError(raw_json, attempts, error)
        if attempt == max_attempts:
            break

        _logger.info(
            "Structured output attempt %d/%d failed: %s",
            attempt, max_attempts, error.describe(),
        )
        if bus is not None:
            await bus.publish(
                StreamEventKind.STRUCTURED_RETRY,
                attempt=attempt,
                max_attempts=max_attempts,
                error=error.describe(),
                request_id=response.request_id,
            )
        current = current.with_input(
            original_input + [assistant_item(raw_json)] + list(turns),
        )

    last = attempts[-1]
    raise StructuredExhaustedError(last.raw_json, attempts, last.error)
