"""Conversational assistant with tool-augmented retrieval.

One `ask()` runs at most two streamed passes:

  1. the conversation plus the search tool schemas; while the buffer looks
     like a tool request the turn shows ``status="searching"`` and no text;
  2. only if a tool intent was classified: the same conversation plus a
     system turn carrying the formatted citations, without tools.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from deckweaver.config import get_settings
from deckweaver.schemas.chat import ChatMessage, ChatRead, ChatTurn
from deckweaver.services import deck_prompts
from deckweaver.services.generation_guard import GenerationGuard
from deckweaver.services.llm_client import StreamSource, llm_stream
from deckweaver.services.retrieval import RetrievalOrchestrator, citation_message
from deckweaver.services.stream_buffer import AccumulatedBuffer
from deckweaver.services.tool_intent import TOOLS, classify, intent_pending

logger = logging.getLogger(__name__)
settings = get_settings()

CONNECTION_ERROR_NOTICE = "*[系统错误: AI 引擎连接中断]*"
SEARCHING = "searching"

TurnObserver = Callable[[ChatTurn], Any]


class ChatSession:
    def __init__(
        self,
        orchestrator: RetrievalOrchestrator,
        *,
        chat_id: str | None = None,
        stream_fn: StreamSource | None = None,
        model: str | None = None,
    ):
        self.id = chat_id or uuid.uuid4().hex
        self.orchestrator = orchestrator
        self.stream = stream_fn or llm_stream
        self.model = model or settings.CHAT_MODEL
        self.turns: list[ChatTurn] = []
        self.guard = GenerationGuard(f"chat:{self.id[:8]}")
        self._observers: list[TurnObserver] = []

    def subscribe(self, observer: TurnObserver) -> Callable[[], None]:
        """Receive a copy of the in-flight assistant turn on every update."""
        self._observers.append(observer)
        return lambda: self._observers.remove(observer) if observer in self._observers else None

    def read(self) -> ChatRead:
        return ChatRead(
            chat_id=self.id,
            busy=self.guard.busy,
            turns=[t.model_copy(deep=True) for t in self.turns],
        )

    def _conversation(self) -> list[ChatMessage]:
        messages = [ChatMessage(role="system", content=deck_prompts.system_prompt("chat_system"))]
        for turn in self.turns:
            if turn.role == "assistant" and (turn.error or not turn.content):
                # drop the question that went unanswered with it
                if messages[-1].role == "user":
                    messages.pop()
                continue
            messages.append(ChatMessage(role=turn.role, content=turn.content))
        return messages

    async def ask(self, user_text: str, on_update: TurnObserver | None = None) -> ChatTurn:
        """Answer ``user_text``; transport failures end up on the returned turn."""

        def emit(turn: ChatTurn) -> None:
            snap = turn.model_copy(deep=True)
            if on_update is not None:
                on_update(snap)
            for observer in list(self._observers):
                observer(snap)

        with self.guard.acquire("chat") as token:
            self.turns.append(ChatTurn(role="user", content=user_text))
            messages = self._conversation()
            turn = ChatTurn(role="assistant")
            self.turns.append(turn)
            emit(turn)

            try:
                first = AccumulatedBuffer()
                async for chunk in self.stream(messages, tools=TOOLS, model=self.model, caller="chat"):
                    if not token.active:
                        break
                    first.feed(chunk)
                    turn.reasoning = first.full_reasoning
                    if intent_pending(first):
                        turn.status = SEARCHING
                        turn.content = ""
                    else:
                        turn.status = None
                        turn.content = first.visible
                    emit(turn)

                intent = classify(first, user_text)
                if intent is None:
                    turn.status = None
                    turn.content = first.visible
                else:
                    turn.status = SEARCHING
                    turn.content = ""
                    emit(turn)
                    citations = await self.orchestrator.gather(intent)
                    turn.citations = citations
                    turn.status = None
                    emit(turn)

                    second = AccumulatedBuffer()
                    prior_reasoning = first.full_reasoning
                    followup = [*messages, citation_message(intent.query, citations)]
                    async for chunk in self.stream(followup, model=self.model, caller="chat_answer"):
                        if not token.active:
                            break
                        second.feed(chunk)
                        turn.content = second.visible
                        turn.reasoning = "\n".join(r for r in (prior_reasoning, second.full_reasoning) if r)
                        emit(turn)
            except Exception as e:
                logger.warning("Chat %s turn failed: %s", self.id[:8], e)
                turn.error = str(e)
                turn.content = f"{turn.content}\n\n{CONNECTION_ERROR_NOTICE}" if turn.content else CONNECTION_ERROR_NOTICE
            finally:
                turn.status = None

            emit(turn)
            logger.info(
                "Chat %s answered: %d chars, %d citations", self.id[:8], len(turn.content), len(turn.citations),
            )
            return turn
