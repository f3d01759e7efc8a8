"""Deck session: the four-stage pipeline state machine.

    collecting ──(outline with ≥1 page appears mid-stream)──▶ outlining
    outlining  ──revise──▶ outlining
    outlining  ──confirm──▶ composing     (pages materialized from the outline)
    composing  ──finalize──▶ finalizing
    finalizing ──back──▶ composing

All generation in a session is serialized through one `GenerationGuard`.
A failed outline generation restores the last good stage, outline and
history and raises `GenerationError`; the same action can simply be retried.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable

from deckweaver.schemas.chat import ChatMessage
from deckweaver.schemas.deck import (
    VALID_TRANSITIONS,
    Outline,
    Page,
    PassReport,
    SessionSnapshot,
    Stage,
)
from deckweaver.services import deck_prompts
from deckweaver.services.errors import (
    GenerationBusyError,
    GenerationError,
    PageNotFoundError,
    StageTransitionError,
)
from deckweaver.services.extractor import parse_structured
from deckweaver.services.generation_guard import GenerationGuard
from deckweaver.services.llm_client import StreamSource, llm_stream
from deckweaver.services.page_queue import PageGenerationQueue
from deckweaver.services.stream_buffer import AccumulatedBuffer

logger = logging.getLogger(__name__)

Observer = Callable[[SessionSnapshot], Any]


class DeckSession:
    def __init__(
        self,
        session_id: str | None = None,
        *,
        stream_fn: StreamSource | None = None,
        style: str | None = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.stage = Stage.COLLECTING
        self.topic = ""
        self.reference_materials = ""
        self.outline: Outline | None = None
        self.outline_reasoning = ""
        self.history: list[ChatMessage] = []
        self.pages: list[Page] = []
        self.selected_index = 0
        self.last_error: str | None = None
        self.style = style

        self.stream = stream_fn or llm_stream
        self.guard = GenerationGuard(f"session:{self.id[:8]}")
        self.queue = PageGenerationQueue(self)
        self._observers: list[Observer] = []

    # ──────── Observation ────────

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; returns a function that unregisters it."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def notify(self) -> None:
        if not self._observers:
            return
        snap = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception:
                logger.warning("Session %s observer failed", self.id, exc_info=True)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            stage=self.stage,
            topic=self.topic,
            outline=self.outline.model_copy(deep=True) if self.outline else None,
            outline_reasoning=self.outline_reasoning,
            pages=[p.model_copy(deep=True) for p in self.pages],
            selected_index=self.selected_index,
            busy_owner=self.guard.owner,
            last_error=self.last_error,
        )

    # ──────── Stage helpers ────────

    def require_stage(self, action: str, *stages: Stage) -> None:
        if self.stage not in stages:
            raise StageTransitionError(action, self.stage.value)

    def _transition(self, target: Stage) -> None:
        if target not in VALID_TRANSITIONS[self.stage]:
            raise StageTransitionError(f"move to {target.value}", self.stage.value)
        if target != self.stage:
            logger.info("Session %s: %s -> %s", self.id[:8], self.stage.value, target.value)
        self.stage = target

    def ensure_idle(self) -> None:
        if self.guard.busy:
            raise GenerationBusyError(self.guard.owner)

    def page(self, index: int) -> Page:
        if not 0 <= index < len(self.pages):
            raise PageNotFoundError(index)
        return self.pages[index]

    # ──────── Outline stage ────────

    async def submit_topic(self, topic: str, reference_materials: str = "") -> Outline:
        """Generate the first outline for ``topic``."""
        self.require_stage("submit a topic", Stage.COLLECTING)
        self.ensure_idle()
        self.topic = topic.strip()
        self.reference_materials = reference_materials
        messages = [
            ChatMessage(role="system", content=deck_prompts.system_prompt("outline", self.style)),
            ChatMessage(role="user", content=deck_prompts.topic_prompt(topic, reference_materials)),
        ]
        return await self._generate_outline(messages)

    async def revise_outline(self, instruction: str) -> Outline:
        """Regenerate the outline in place, with the revision appended to the history."""
        self.require_stage("revise the outline", Stage.OUTLINING)
        messages = [*self.history, ChatMessage(role="user", content=instruction.strip())]
        return await self._generate_outline(messages)

    async def _generate_outline(self, messages: list[ChatMessage]) -> Outline:
        with self.guard.acquire("outline") as token:
            prev_stage = self.stage
            prev_outline = self.outline
            prev_reasoning = self.outline_reasoning
            buffer = AccumulatedBuffer()
            self.outline_reasoning = ""
            self.last_error = None
            self.notify()

            try:
                async for chunk in self.stream(messages, caller="outline"):
                    if not token.active:
                        break
                    buffer.feed(chunk)
                    candidate = Outline.from_payload(parse_structured(buffer.visible))
                    if candidate is not None and candidate.pages:
                        self.outline = candidate
                        if self.stage == Stage.COLLECTING:
                            self._transition(Stage.OUTLINING)
                    self.outline_reasoning = buffer.full_reasoning
                    self.notify()

                final = Outline.from_payload(parse_structured(buffer.visible))
                if final is None or not final.pages:
                    raise GenerationError("outline", "stream finished without an outline page")
            except Exception as e:
                self.stage = prev_stage
                self.outline = prev_outline
                self.outline_reasoning = prev_reasoning
                self.last_error = str(e)
                logger.warning("Session %s outline generation failed: %s", self.id[:8], e)
                self.notify()
                if isinstance(e, GenerationError):
                    raise
                raise GenerationError("outline", str(e)) from e

            self.outline = final
            self.history = [
                *messages,
                ChatMessage(role="assistant", content=json.dumps(final.model_dump(), ensure_ascii=False)),
            ]
            logger.info(
                "Session %s outline ready: %r, %d pages",
                self.id[:8], final.title, len(final.pages),
            )
        self.notify()
        return final

    def confirm_outline(self) -> list[Page]:
        """Fix the outline and create one empty page per outline entry."""
        self.require_stage("confirm the outline", Stage.OUTLINING)
        self.ensure_idle()
        if self.outline is None or not self.outline.pages:
            raise StageTransitionError("confirm an empty outline", self.stage.value)
        self.pages = [Page(title=p.title, summary=p.summary) for p in self.outline.pages]
        self.selected_index = 0
        self._transition(Stage.COMPOSING)
        self.notify()
        return self.pages

    # ──────── Composing / finalizing ────────

    async def run_text_pass(self) -> PassReport:
        return await self.queue.run_text_pass()

    async def run_markup_pass(self) -> PassReport:
        return await self.queue.run_markup_pass()

    async def modify_page(self, instruction: str) -> Page:
        return await self.queue.modify_page(instruction)

    async def regenerate_page(self, index: int) -> Page:
        return await self.queue.regenerate_page(index)

    def start_finalize(self) -> None:
        self.require_stage("start finalizing", Stage.COMPOSING)
        self.ensure_idle()
        self._transition(Stage.FINALIZING)
        self.notify()

    def go_back(self) -> None:
        """Return to composing. A page still rendering is left to finish."""
        self.require_stage("go back", Stage.FINALIZING)
        self._transition(Stage.COMPOSING)
        self.notify()

    def select_page(self, index: int) -> Page:
        page = self.page(index)
        self.selected_index = index
        self.notify()
        return page

    def edit_page(self, index: int, *, content: str | None = None, html: str | None = None) -> Page:
        """Manual edit; overrides the last generated value."""
        self.require_stage("edit a page", Stage.COMPOSING, Stage.FINALIZING)
        page = self.page(index)
        if page.generating:
            raise GenerationBusyError(self.guard.owner or f"page {index}")
        if content is not None:
            page.content = content
        if html is not None:
            page.html = html
        if content is not None or html is not None:
            page.error = None
        self.notify()
        return page
