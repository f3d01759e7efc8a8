"""Pydantic v2 schemas package."""

from deckweaver.schemas.stream import StreamChunk, ToolCallDelta
from deckweaver.schemas.chat import (
    AskRequest,
    ChatMessage,
    ChatRead,
    ChatTurn,
    Citation,
    DocumentImport,
    ReferenceBundle,
    ReferenceSearch,
    TextDocument,
    UrlImport,
)
from deckweaver.schemas.deck import (
    Outline,
    OutlinePage,
    OutlineRevision,
    Page,
    PageEdit,
    PageModification,
    PassReport,
    SessionCreate,
    SessionSnapshot,
    Stage,
    TopicSubmit,
)

__all__ = [
    "StreamChunk",
    "ToolCallDelta",
    "AskRequest",
    "ChatMessage",
    "ChatRead",
    "ChatTurn",
    "Citation",
    "DocumentImport",
    "ReferenceBundle",
    "ReferenceSearch",
    "TextDocument",
    "UrlImport",
    "Outline",
    "OutlinePage",
    "OutlineRevision",
    "Page",
    "PageEdit",
    "PageModification",
    "PassReport",
    "SessionCreate",
    "SessionSnapshot",
    "Stage",
    "TopicSubmit",
]
