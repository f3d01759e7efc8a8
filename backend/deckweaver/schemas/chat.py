from __future__ import annotations
"""Pydantic v2 schemas for conversation turns and retrieval citations."""

import uuid
from typing import Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """A single message sent to the model."""

    role: Literal["system", "user", "assistant"]
    content: str


class Citation(BaseModel):
    """A retrieval result attached to an answer as supporting evidence."""

    title: str
    url: str = ""
    source: str = ""
    snippet: str = ""
    body: str = ""
    published: str = ""
    score: float | None = None

    model_config = {"frozen": True}


class ChatTurn(BaseModel):
    """One turn of the conversational assistant, as observed by the UI."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str = ""
    reasoning: str = ""
    citations: list[Citation] = Field(default_factory=list)
    status: str | None = None  # "searching" while a tool call is pending
    error: str | None = None


class AskRequest(BaseModel):
    """Schema for sending a user message to a chat session."""

    message: str = Field(..., min_length=1, max_length=20000)


class ChatRead(BaseModel):
    """Schema for reading a chat session."""

    chat_id: str
    busy: bool
    turns: list[ChatTurn]


class ReferenceSearch(BaseModel):
    """Schema for building reference material from a search."""

    query: str = Field(..., min_length=1, max_length=500)
    tool: Literal["search_knowledge_base", "search_internet"] = "search_internet"


class UrlImport(BaseModel):
    """Schema for building reference material from user-supplied URLs."""

    urls: list[str] = Field(..., min_length=1, max_length=20)


class TextDocument(BaseModel):
    """A user-supplied text file, already decoded by the client."""

    filename: str = Field(..., min_length=1, max_length=255, pattern=r"(?i)\.(md|txt|csv|json)$")
    text: str = Field(..., max_length=200_000)


class DocumentImport(BaseModel):
    """Schema for building reference material from uploaded text files."""

    documents: list[TextDocument] = Field(..., min_length=1, max_length=20)


class ReferenceBundle(BaseModel):
    """Citations plus their plain-text rendering for the topic form."""

    citations: list[Citation]
    text: str
