from __future__ import annotations
"""Deck session endpoints: the four-stage report pipeline.

POST   /api/sessions                              open a session
GET    /api/sessions/{id}                         current snapshot
DELETE /api/sessions/{id}
POST   /api/sessions/{id}/topic                   (SSE) first outline
POST   /api/sessions/{id}/outline/revise          (SSE) regenerate outline
POST   /api/sessions/{id}/outline/confirm         materialize pages
POST   /api/sessions/{id}/passes/text             (SSE) fill page content
POST   /api/sessions/{id}/passes/markup           (SSE) fill page html
POST   /api/sessions/{id}/finalize | /back        stage navigation
POST   /api/sessions/{id}/pages/{index}/select
PATCH  /api/sessions/{id}/pages/{index}           manual edit
POST   /api/sessions/{id}/pages/modify            (SSE) modify selected page
POST   /api/sessions/{id}/pages/{index}/regenerate (SSE)

Streaming endpoints validate stage and idleness up front (409 before any
byte is sent), then emit ``snapshot`` events followed by ``done`` or ``error``.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from deckweaver.api.deps import event_stream, get_stream_source, relay_events
from deckweaver.schemas.deck import (
    OutlineRevision,
    PageEdit,
    PageModification,
    SessionCreate,
    SessionSnapshot,
    Stage,
    TopicSubmit,
)
from deckweaver.services.deck_session import DeckSession
from deckweaver.services.errors import QueueOrderError
from deckweaver.services.llm_client import StreamSource

logger = logging.getLogger(__name__)

router = APIRouter()

# In-process registry; sessions are not persisted
_sessions: dict[str, DeckSession] = {}


def get_session(session_id: str) -> DeckSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("", response_model=SessionSnapshot, status_code=201)
async def create_session(
    data: SessionCreate | None = None,
    stream_fn: StreamSource = Depends(get_stream_source),
):
    """Open a new session in the collecting stage."""
    session = DeckSession(stream_fn=stream_fn, style=data.style if data else None)
    _sessions[session.id] = session
    logger.info("Session %s created (style=%s)", session.id[:8], session.style or "default")
    return session.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot)
async def read_session(session: DeckSession = Depends(get_session)):
    return session.snapshot()


@router.delete("/{session_id}", status_code=204)
async def delete_session(session: DeckSession = Depends(get_session)):
    session.ensure_idle()
    _sessions.pop(session.id, None)


# ──────── Outline ────────

@router.post("/{session_id}/topic")
async def submit_topic(data: TopicSubmit, session: DeckSession = Depends(get_session)):
    session.require_stage("submit a topic", Stage.COLLECTING)
    session.ensure_idle()
    return event_stream(relay_events(
        session.subscribe, session.submit_topic(data.topic, data.reference_materials),
    ))


@router.post("/{session_id}/outline/revise")
async def revise_outline(data: OutlineRevision, session: DeckSession = Depends(get_session)):
    session.require_stage("revise the outline", Stage.OUTLINING)
    session.ensure_idle()
    return event_stream(relay_events(session.subscribe, session.revise_outline(data.instruction)))


@router.post("/{session_id}/outline/confirm", response_model=SessionSnapshot)
async def confirm_outline(session: DeckSession = Depends(get_session)):
    session.confirm_outline()
    return session.snapshot()


# ──────── Queue passes ────────

@router.post("/{session_id}/passes/text")
async def run_text_pass(session: DeckSession = Depends(get_session)):
    session.require_stage("start the text pass", Stage.COMPOSING)
    session.ensure_idle()
    return event_stream(relay_events(session.subscribe, session.run_text_pass()))


@router.post("/{session_id}/passes/markup")
async def run_markup_pass(session: DeckSession = Depends(get_session)):
    session.require_stage("start the markup pass", Stage.FINALIZING)
    session.ensure_idle()
    missing = [i for i, p in enumerate(session.pages) if not p.content.strip()]
    if missing:
        raise QueueOrderError(f"Pages without content: {missing}")
    return event_stream(relay_events(session.subscribe, session.run_markup_pass()))


# ──────── Stage navigation ────────

@router.post("/{session_id}/finalize", response_model=SessionSnapshot)
async def start_finalize(session: DeckSession = Depends(get_session)):
    session.start_finalize()
    return session.snapshot()


@router.post("/{session_id}/back", response_model=SessionSnapshot)
async def go_back(session: DeckSession = Depends(get_session)):
    session.go_back()
    return session.snapshot()


# ──────── Pages ────────

@router.post("/{session_id}/pages/{index}/select", response_model=SessionSnapshot)
async def select_page(index: int, session: DeckSession = Depends(get_session)):
    session.select_page(index)
    return session.snapshot()


@router.patch("/{session_id}/pages/{index}", response_model=SessionSnapshot)
async def edit_page(index: int, data: PageEdit, session: DeckSession = Depends(get_session)):
    if data.content is None and data.html is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    session.edit_page(index, content=data.content, html=data.html)
    return session.snapshot()


@router.post("/{session_id}/pages/modify")
async def modify_page(data: PageModification, session: DeckSession = Depends(get_session)):
    session.require_stage("modify a page", Stage.COMPOSING, Stage.FINALIZING)
    session.ensure_idle()
    session.page(session.selected_index)
    return event_stream(relay_events(session.subscribe, session.modify_page(data.instruction)))


@router.post("/{session_id}/pages/{index}/regenerate")
async def regenerate_page(index: int, session: DeckSession = Depends(get_session)):
    session.require_stage("regenerate a page", Stage.COMPOSING, Stage.FINALIZING)
    session.ensure_idle()
    session.page(index)
    return event_stream(relay_events(session.subscribe, session.regenerate_page(index)))
