from __future__ import annotations
"""Pydantic v2 schemas for the deck pipeline: stages, outline, pages."""

import enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from deckweaver.schemas.chat import ChatMessage

DEFAULT_OUTLINE_TITLE = "报告大纲"

PageField = Literal["content", "html"]


class Stage(str, enum.Enum):
    """Pipeline stages: exactly one is active per session."""

    COLLECTING = "collecting"
    OUTLINING = "outlining"
    COMPOSING = "composing"
    FINALIZING = "finalizing"


# Explicit valid transitions: stage -> set of reachable stages
VALID_TRANSITIONS: dict[Stage, set[Stage]] = {
    Stage.COLLECTING: {Stage.OUTLINING},
    Stage.OUTLINING: {Stage.OUTLINING, Stage.COMPOSING},
    Stage.COMPOSING: {Stage.FINALIZING},
    Stage.FINALIZING: {Stage.COMPOSING},
}


class OutlinePage(BaseModel):
    """A page stub in the outline."""

    title: str
    summary: str = ""


class Outline(BaseModel):
    """The top-level plan produced by the outline stage."""

    title: str = DEFAULT_OUTLINE_TITLE
    pages: list[OutlinePage] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> Outline | None:
        """Build an outline from an extracted JSON snapshot.

        Page descriptions may arrive as ``summary`` or ``content``. Pages
        without a title (still streaming) are dropped. Returns None when the
        payload is not an object.
        """
        if not isinstance(payload, dict):
            return None
        title = payload.get("title")
        if not isinstance(title, str) or not title.strip():
            title = DEFAULT_OUTLINE_TITLE

        pages: list[OutlinePage] = []
        raw_pages = payload.get("pages")
        if isinstance(raw_pages, list):
            for item in raw_pages:
                if not isinstance(item, dict):
                    continue
                page_title = item.get("title")
                if not isinstance(page_title, str) or not page_title.strip():
                    continue
                summary = item.get("summary")
                if not isinstance(summary, str):
                    summary = item.get("content")
                pages.append(OutlinePage(
                    title=page_title.strip(),
                    summary=summary if isinstance(summary, str) else "",
                ))
        return cls(title=title.strip(), pages=pages)


class Page(BaseModel):
    """One unit of final output: text content first, rendered markup later."""

    title: str
    summary: str = ""
    content: str = ""
    html: str = ""
    draft: str = ""  # in-flight modification, committed on completion
    generating: bool = False
    reasoning: str = ""
    error: str | None = None
    conversation_context: dict[str, list[ChatMessage]] = Field(
        default_factory=lambda: {"content": [], "html": []},
    )

    def field_value(self, field: PageField) -> str:
        return self.content if field == "content" else self.html


class PassReport(BaseModel):
    """Outcome of one queue pass."""

    field: PageField
    completed: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    skipped: list[int] = Field(default_factory=list)


class SessionSnapshot(BaseModel):
    """Everything the UI collaborator observes about a session."""

    session_id: str
    stage: Stage
    topic: str = ""
    outline: Outline | None = None
    outline_reasoning: str = ""
    pages: list[Page] = Field(default_factory=list)
    selected_index: int = 0
    busy_owner: str | None = None
    last_error: str | None = None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class TopicSubmit(BaseModel):
    """Schema for submitting the topic (and optional reference material)."""

    topic: str = Field(..., min_length=1, max_length=5000)
    reference_materials: str = ""


class OutlineRevision(BaseModel):
    """Schema for a revision instruction on the current outline."""

    instruction: str = Field(..., min_length=1, max_length=5000)


class PageEdit(BaseModel):
    """Schema for a manual edit of a page's content or markup."""

    content: str | None = None
    html: str | None = None


class PageModification(BaseModel):
    """Schema for an instruction-driven modification of the selected page."""

    instruction: str = Field(..., min_length=1, max_length=5000)


class SessionCreate(BaseModel):
    """Schema for opening a new deck session."""

    style: str | None = None
