from __future__ import annotations
"""Chat assistant endpoints.

POST /api/chats                 open a chat
GET  /api/chats/{id}            turns so far
POST /api/chats/{id}/ask        (SSE) ``turn`` events, then ``done``
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from deckweaver.api.deps import event_stream, get_orchestrator, get_stream_source, relay_events
from deckweaver.schemas.chat import AskRequest, ChatRead
from deckweaver.services.chat_assistant import ChatSession
from deckweaver.services.llm_client import StreamSource
from deckweaver.services.retrieval import RetrievalOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

_chats: dict[str, ChatSession] = {}


def get_chat(chat_id: str) -> ChatSession:
    chat = _chats.get(chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.post("", response_model=ChatRead, status_code=201)
async def create_chat(
    stream_fn: StreamSource = Depends(get_stream_source),
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    chat = ChatSession(orchestrator, stream_fn=stream_fn)
    _chats[chat.id] = chat
    return chat.read()


@router.get("/{chat_id}", response_model=ChatRead)
async def read_chat(chat: ChatSession = Depends(get_chat)):
    return chat.read()


@router.post("/{chat_id}/ask")
async def ask(data: AskRequest, chat: ChatSession = Depends(get_chat)):
    """Stream the assistant turn; transport failures arrive inside the turn."""
    if chat.guard.busy:
        raise HTTPException(status_code=409, detail=f"Generation already in progress: {chat.guard.owner}")
    return event_stream(relay_events(chat.subscribe, chat.ask(data.message), event="turn"))
