from __future__ import annotations
"""Pydantic v2 schemas for streaming chunks delivered by the LLM transport."""

from pydantic import BaseModel, Field


class ToolCallDelta(BaseModel):
    """A fragment of a native tool call; name and arguments arrive in pieces."""

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


class StreamChunk(BaseModel):
    """One incremental unit of a streaming response."""

    content: str | None = None
    reasoning: str | None = None
    tool_calls: list[ToolCallDelta] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.content or self.reasoning or self.tool_calls)
