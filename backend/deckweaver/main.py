from __future__ import annotations
"""DeckWeaver: FastAPI application entry point.

Mounts all API routes, configures CORS, maps pipeline errors to HTTP
statuses and closes the shared HTTP clients on shutdown.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deckweaver.api.deps import close_retrieval
from deckweaver.api.router import api_router
from deckweaver.config import get_settings
from deckweaver.services.errors import DeckError, http_status
from deckweaver.services.llm_client import close_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# httpx logs every request line at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: log config on startup, close HTTP clients on shutdown."""
    logger.info("DeckWeaver starting up...")
    logger.info("USE_MOCK_API: %s", settings.USE_MOCK_API)
    logger.info("Models: deck=%s chat=%s", settings.DECK_MODEL, settings.CHAT_MODEL)

    yield

    await close_client()
    await close_retrieval()
    logger.info("DeckWeaver shut down")


app = FastAPI(
    title="DeckWeaver API",
    description="流式报告生成引擎：主题 → 大纲 → 逐页撰写 → 页面渲染，附带检索增强问答",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

# CORS: allow frontend dev server (configurable via CORS_ORIGINS env)
_cors_origins = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:9000,http://localhost:3000,http://127.0.0.1:9000,http://127.0.0.1:3000",
).split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DeckError)
async def deck_error_handler(request: Request, exc: DeckError):
    return JSONResponse(
        status_code=http_status(exc),
        content={"detail": str(exc), "error": type(exc).__name__},
    )


app.include_router(api_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "DeckWeaver",
        "status": "running",
        "mock_mode": settings.USE_MOCK_API,
    }


@app.get("/health")
async def health():
    return {"status": "healthy", "mock_mode": settings.USE_MOCK_API}
