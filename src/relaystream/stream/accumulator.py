"""Tool-call delta accumulation.

Streamed tool calls arrive as fragments keyed by ``index``: the first
fragment usually carries the id, type and function name, later fragments
carry pieces of the JSON argument string that must be concatenated.
"""

from __future__ import annotations

from relaystream.types import FunctionCall, ToolCall, ToolCallDelta, ToolType


class ToolCallAccumulator:
    """Fold ``ToolCallDelta`` fragments into complete ``ToolCall`` objects."""

    def __init__(self) -> None:
        self._calls: dict[int, ToolCall] = {}

    def process_delta(self, delta: ToolCallDelta) -> bool:
        """Merge *delta*.  Returns ``True`` if it started a new tool call."""
        existing = self._calls.get(delta.index)
        fn = delta.function

        if existing is None:
            self._calls[delta.index] = ToolCall(
                id=delta.id or "",
                type=ToolType.coerce(delta.type) if delta.type else ToolType.FUNCTION,
                function=FunctionCall(
                    name=fn.name if fn else "",
                    arguments=fn.arguments if fn else "",
                ),
            )
            return True

        # id/type are fixed by the first fragment
        if fn is not None:
            if existing.function is None:
                existing.function = FunctionCall()
            if fn.name:
                existing.function.name = fn.name
            if fn.arguments:
                existing.function.arguments += fn.arguments
        return False

    def get_tool_calls(self) -> list[ToolCall]:
        """All accumulated calls in index order; unpopulated indices are skipped."""
        if not self._calls:
            return []
        return [
            self._calls[i]
            for i in range(max(self._calls) + 1)
            if i in self._calls
        ]

    def get_tool_call(self, index: int) -> ToolCall | None:
        return self._calls.get(index)

    def has_calls(self) -> bool:
        return bool(self._calls)

    def reset(self) -> None:
        self._calls.clear()
