"""NDJSON line framing."""

from __future__ import annotations

import re

_LINE_SPLIT = re.compile(r"\r?\n")


def consume_ndjson_buffer(buffer: str, flush: bool = False) -> tuple[list[str], str]:
    """Split *buffer* into complete NDJSON records.

    Returns ``(records, remainder)``.  Records are trimmed and blank lines
    are dropped.  Unless *flush* is set, the last segment is held back as the
    remainder because it may still be incomplete; with *flush* it becomes a
    record (if non-blank) and the remainder is empty.
    """
    lines = _LINE_SPLIT.split(buffer)
    limit = len(lines) if flush else len(lines) - 1
    records = [line.strip() for line in lines[:limit] if line.strip()]
    remainder = "" if flush else lines[-1]
    return records, remainder
