from __future__ import annotations
"""Shared API dependencies: stream source, retrieval stack, SSE framing."""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from deckweaver.services.errors import DeckError, http_status
from deckweaver.services.llm_client import StreamSource, llm_stream
from deckweaver.services.retrieval import RetrievalOrchestrator
from deckweaver.services.retrieval_backends import JinaReader, SemanticSearchClient

logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_orchestrator: RetrievalOrchestrator | None = None

# actions whose SSE client went away; held until they finish
_background_tasks: set[asyncio.Future] = set()


def get_stream_source() -> StreamSource:
    return llm_stream


def get_orchestrator() -> RetrievalOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RetrievalOrchestrator(SemanticSearchClient(), JinaReader())
    return _orchestrator


async def close_retrieval() -> None:
    global _orchestrator
    if _orchestrator is None:
        return
    for adapter in (_orchestrator.knowledge_search, _orchestrator.reader):
        aclose = getattr(adapter, "aclose", None)
        if aclose is not None:
            await aclose()
    _orchestrator = None


def sse_event(event: str, data: Any) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def relay_events(
    subscribe: Callable[[Callable[[Any], None]], Callable[[], None]],
    action: Awaitable[Any],
    event: str = "snapshot",
) -> AsyncIterator[str]:
    """Run ``action`` and relay every published state as an SSE event.

    Snapshots that pile up while the client is slow are coalesced to the
    latest one. Ends with ``done`` (the action's result) or ``error``.
    """
    updates: asyncio.Queue = asyncio.Queue()
    unsubscribe = subscribe(updates.put_nowait)
    task = asyncio.ensure_future(action)
    try:
        while True:
            getter = asyncio.ensure_future(updates.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                break
            latest = getter.result()
            while not updates.empty():
                latest = updates.get_nowait()
            yield sse_event(event, latest)

        latest = None
        while not updates.empty():
            latest = updates.get_nowait()
        if latest is not None:
            yield sse_event(event, latest)

        try:
            result = task.result()
        except DeckError as e:
            yield sse_event("error", {
                "status": http_status(e),
                "error": type(e).__name__,
                "detail": str(e),
            })
        except Exception as e:
            logger.exception("SSE action failed")
            yield sse_event("error", {"status": 500, "error": type(e).__name__, "detail": str(e)})
        else:
            yield sse_event("done", result if result is not None else {})
    finally:
        unsubscribe()
        if not task.done():
            logger.info("SSE client disconnected, generation continues in background")
            _background_tasks.add(task)
            task.add_done_callback(_finish_background)


def _finish_background(task: asyncio.Future) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background generation failed: %s", exc, exc_info=exc)


def event_stream(body: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(body, media_type="text/event-stream", headers=_SSE_HEADERS)
