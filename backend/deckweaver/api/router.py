from __future__ import annotations
"""Master API router: mounts all sub-routers."""

from fastapi import APIRouter

from deckweaver.api.chats import router as chats_router
from deckweaver.api.references import router as references_router
from deckweaver.api.sessions import router as sessions_router
from deckweaver.api.system import router as system_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(sessions_router, prefix="/sessions", tags=["Deck Sessions"])
api_router.include_router(chats_router, prefix="/chats", tags=["Chat Assistant"])
api_router.include_router(references_router, prefix="/references", tags=["References"])
api_router.include_router(system_router, prefix="/system", tags=["System"])
