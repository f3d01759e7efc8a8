"""Page generation queue: serial text and markup passes over a deck.

A pass holds the session guard for its whole run and works on one page at
a time, always the lowest index whose target field is still empty. A page
that fails gets a placeholder value plus ``page.error`` and the pass moves
on; the failure never stops the batch.

Single-page modification and regeneration bypass the queue but share the
same guard, so they never overlap a pass.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from deckweaver.schemas.chat import ChatMessage
from deckweaver.schemas.deck import Page, PageField, PassReport, Stage
from deckweaver.services import deck_prompts
from deckweaver.services.errors import GenerationError, QueueOrderError
from deckweaver.services.extractor import extract_markup_block, parse_structured
from deckweaver.services.generation_guard import GenerationToken
from deckweaver.services.stream_buffer import AccumulatedBuffer
from deckweaver.services.tool_intent import looks_like_tool_payload

if TYPE_CHECKING:
    from deckweaver.services.deck_session import DeckSession

logger = logging.getLogger(__name__)

CONTENT_FAILED_PREFIX = "生成失败"
MARKUP_FAILED_TEMPLATE = '<div class="deck-error">渲染失败: {message}</div>'

_PASS_STAGE: dict[PageField, Stage] = {"content": Stage.COMPOSING, "html": Stage.FINALIZING}
_PROMPT_NAME: dict[PageField, str] = {"content": "page_content", "html": "page_html"}

_MODIFY_HINT: dict[PageField, str] = {
    "content": '请根据以下修改意见重写本页内容，仍按 {"content": "..."} 的 JSON 格式输出完整内容：\n',
    "html": "请根据以下修改意见调整页面，输出修改后的完整 HTML 代码块：\n",
}


def extract_page_content(buffer: AccumulatedBuffer) -> str:
    """Current page text: the ``content`` field of a JSON answer, or plain markdown."""
    text = buffer.visible
    payload = parse_structured(text)
    if isinstance(payload, dict) and isinstance(payload.get("content"), str):
        return payload["content"]
    # markdown may quote JSON inline; only a leading object or fence is a payload
    if looks_like_tool_payload(text) or text.lstrip().startswith("```"):
        return ""
    return text.strip()


def extract_page_markup(buffer: AccumulatedBuffer) -> str:
    return extract_markup_block(buffer.content)


_EXTRACTORS = {"content": extract_page_content, "html": extract_page_markup}


def failure_placeholder(field: PageField, message: str) -> str:
    if field == "content":
        return f"{CONTENT_FAILED_PREFIX}: {message}"
    return MARKUP_FAILED_TEMPLATE.format(message=message)


class PageGenerationQueue:
    def __init__(self, session: DeckSession):
        self.session = session

    # ──────── Passes ────────

    async def run_text_pass(self) -> PassReport:
        """Fill ``content`` for every page that lacks it."""
        self.session.require_stage("start the text pass", Stage.COMPOSING)
        return await self._run_pass("content")

    async def run_markup_pass(self) -> PassReport:
        """Fill ``html`` for every page that lacks it; needs every page's content."""
        self.session.require_stage("start the markup pass", Stage.FINALIZING)
        missing = [i for i, p in enumerate(self.session.pages) if not p.content.strip()]
        if missing:
            raise QueueOrderError(f"Pages without content: {missing}")
        return await self._run_pass("html")

    async def _run_pass(self, field: PageField) -> PassReport:
        session = self.session
        report = PassReport(field=field)
        attempted: set[int] = set()

        with session.guard.acquire(f"{field}_pass") as token:
            logger.info("Session %s: %s pass over %d pages", session.id[:8], field, len(session.pages))
            if field == "html":
                report.skipped = [i for i, p in enumerate(session.pages) if p.error and not p.html]
                attempted.update(report.skipped)

            while True:
                if session.stage != _PASS_STAGE[field]:
                    logger.info("Session %s left %s, stopping %s pass", session.id[:8], _PASS_STAGE[field].value, field)
                    break
                index = self._next_index(field, attempted)
                if index is None:
                    break
                attempted.add(index)
                if await self._fill(token, index, field):
                    report.completed.append(index)
                else:
                    report.failed.append(index)

        logger.info(
            "Session %s %s pass done: completed=%s failed=%s skipped=%s",
            session.id[:8], field, report.completed, report.failed, report.skipped,
        )
        session.notify()
        return report

    def _next_index(self, field: PageField, attempted: set[int]) -> int | None:
        for i, page in enumerate(self.session.pages):
            if i in attempted or page.generating:
                continue
            if not page.field_value(field):
                return i
        return None

    def _seed_messages(self, index: int, field: PageField) -> list[ChatMessage]:
        session = self.session
        page = session.pages[index]
        if field == "content":
            prompt = deck_prompts.page_content_prompt(session.topic, index, page)
        else:
            prompt = deck_prompts.page_html_prompt(session.topic, page)
        return [
            ChatMessage(role="system", content=deck_prompts.system_prompt(_PROMPT_NAME[field], session.style)),
            ChatMessage(role="user", content=prompt),
        ]

    async def _fill(self, token: GenerationToken, index: int, field: PageField) -> bool:
        """Generate one page field. Failures become placeholders; never raises."""
        session = self.session
        page = session.pages[index]
        messages = self._seed_messages(index, field)
        extract = _EXTRACTORS[field]
        buffer = AccumulatedBuffer()

        page.generating = True
        page.error = None
        page.reasoning = ""
        session.notify()
        try:
            async for chunk in session.stream(messages, caller=f"page_{field}"):
                if not token.active:
                    break
                buffer.feed(chunk)
                value = extract(buffer)
                if value:
                    setattr(page, field, value)
                page.reasoning = buffer.full_reasoning
                session.notify()

            final = extract(buffer)
            if not final:
                raise GenerationError(f"page {index}", f"no {field} in model output")
            setattr(page, field, final)
            page.conversation_context[field] = [
                *messages, ChatMessage(role="assistant", content=buffer.visible or final),
            ]
            return True
        except Exception as e:
            message = str(e)
            setattr(page, field, failure_placeholder(field, message))
            page.error = message
            logger.warning("Session %s page %d %s failed: %s", session.id[:8], index, field, message)
            return False
        finally:
            page.generating = False
            session.notify()

    # ──────── Single-page actions ────────

    def _target_field(self, action: str) -> PageField:
        self.session.require_stage(action, Stage.COMPOSING, Stage.FINALIZING)
        return "content" if self.session.stage == Stage.COMPOSING else "html"

    async def modify_page(self, instruction: str) -> Page:
        """Apply ``instruction`` to the selected page's content (composing) or html (finalizing).

        The page's own conversation context is reused, or seeded from the
        current value when empty. The result streams into ``page.draft``
        and replaces the field only once the stream completes.
        """
        session = self.session
        field = self._target_field("modify a page")
        index = session.selected_index
        page = session.page(index)
        extract = _EXTRACTORS[field]

        with session.guard.acquire(f"modify:{index}") as token:
            context = list(page.conversation_context[field])
            if not context:
                context = self._seed_messages(index, field)
                current = page.field_value(field)
                if current:
                    context.append(ChatMessage(role="assistant", content=current))
            messages = [*context, ChatMessage(role="user", content=_MODIFY_HINT[field] + instruction.strip())]

            buffer = AccumulatedBuffer()
            page.generating = True
            page.draft = ""
            session.notify()
            try:
                async for chunk in session.stream(messages, caller=f"modify_{field}"):
                    if not token.active:
                        break
                    buffer.feed(chunk)
                    page.draft = extract(buffer) or page.draft
                    page.reasoning = buffer.full_reasoning
                    session.notify()
                final = extract(buffer)
                if not final:
                    raise GenerationError(f"page {index}", f"no {field} in model output")
            except Exception as e:
                session.last_error = str(e)
                logger.warning("Session %s modify page %d failed: %s", session.id[:8], index, e)
                if isinstance(e, GenerationError):
                    raise
                raise GenerationError(f"page {index}", str(e)) from e
            finally:
                page.generating = False
                page.draft = ""
                session.notify()

            setattr(page, field, final)
            page.error = None
            page.conversation_context[field] = [
                *messages, ChatMessage(role="assistant", content=buffer.visible or final),
            ]
            session.last_error = None
            logger.info("Session %s page %d %s modified", session.id[:8], index, field)
        session.notify()
        return page

    async def regenerate_page(self, index: int) -> Page:
        """Regenerate one page's current-stage field from scratch."""
        session = self.session
        field = self._target_field("regenerate a page")
        page = session.page(index)
        with session.guard.acquire(f"regenerate:{index}") as token:
            setattr(page, field, "")
            page.conversation_context[field] = []
            ok = await self._fill(token, index, field)
        if not ok:
            raise GenerationError(f"page {index}", page.error or "generation failed")
        return page
