"""Append-only accumulation of a streamed generation."""

from __future__ import annotations

from dataclasses import dataclass, field

from deckweaver.schemas.stream import StreamChunk, ToolCallDelta
from deckweaver.services.extractor import extract_thought_segments


@dataclass
class NativeToolCall:
    """A native tool call assembled from its deltas."""
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Merge tool-call deltas by index, in arrival order."""

    def __init__(self) -> None:
        self._calls: dict[int, NativeToolCall] = {}

    def feed(self, delta: ToolCallDelta) -> None:
        call = self._calls.setdefault(delta.index, NativeToolCall(index=delta.index))
        if delta.id:
            call.id = delta.id
        if delta.name:
            call.name = delta.name
        if delta.arguments:
            call.arguments += delta.arguments

    @property
    def started(self) -> bool:
        return bool(self._calls)

    @property
    def first(self) -> NativeToolCall | None:
        if not self._calls:
            return None
        return self._calls[min(self._calls)]

    def calls(self) -> list[NativeToolCall]:
        return [self._calls[i] for i in sorted(self._calls)]


@dataclass
class AccumulatedBuffer:
    """Content and reasoning text of one in-flight generation unit.

    Reasoning may arrive as a dedicated delta or inline as ``<think>`` blocks
    inside the content; ``visible`` and ``full_reasoning`` merge both views.
    """

    content: str = ""
    reasoning: str = ""
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    chunks: int = 0

    def feed(self, chunk: StreamChunk) -> None:
        self.chunks += 1
        if chunk.reasoning:
            self.reasoning += chunk.reasoning
        if chunk.content:
            self.content += chunk.content
        for delta in chunk.tool_calls:
            self.tool_calls.feed(delta)

    @property
    def visible(self) -> str:
        """Content with inline reasoning removed."""
        return extract_thought_segments(self.content).content

    @property
    def full_reasoning(self) -> str:
        inline = extract_thought_segments(self.content).reasoning
        if self.reasoning and inline:
            return f"{self.reasoning}\n{inline}"
        return self.reasoning or inline
