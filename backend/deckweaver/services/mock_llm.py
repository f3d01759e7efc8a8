"""Canned streaming responses for offline development (USE_MOCK_API=true).

Each generator mimics what the real model streams for a given caller,
split into small chunks so the incremental extractors see partial buffers.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from deckweaver.schemas.chat import ChatMessage
from deckweaver.schemas.stream import StreamChunk, ToolCallDelta

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 12
_CHUNK_DELAY = 0.01


def _last_user_text(messages: list[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


def _split(text: str, size: int = _CHUNK_SIZE) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


async def _emit_text(text: str, reasoning: str = "") -> AsyncIterator[StreamChunk]:
    for piece in _split(reasoning):
        await asyncio.sleep(_CHUNK_DELAY)
        yield StreamChunk(reasoning=piece)
    for piece in _split(text):
        await asyncio.sleep(_CHUNK_DELAY)
        yield StreamChunk(content=piece)


def _mock_outline(topic: str) -> str:
    subject = topic.strip().splitlines()[0][:40] if topic.strip() else "主题"
    return json.dumps({
        "title": f"{subject}综述",
        "pages": [
            {"title": "背景与概述", "summary": f"介绍{subject}的由来与核心概念"},
            {"title": "关键进展", "summary": f"梳理{subject}近年来的主要突破"},
            {"title": "挑战与展望", "summary": f"总结{subject}面临的问题和发展方向"},
        ],
    }, ensure_ascii=False)


def _mock_page_content(prompt: str) -> str:
    heading = prompt.strip().splitlines()[0][:60] if prompt.strip() else "本页"
    body = (
        f"## {heading}\n\n"
        "- 要点一：核心概念与定义\n"
        "- 要点二：代表性数据与案例\n"
        "- 要点三：对后续章节的铺垫\n"
    )
    return json.dumps({"content": body}, ensure_ascii=False)


def _mock_page_html(prompt: str) -> str:
    heading = prompt.strip().splitlines()[0][:60] if prompt.strip() else "本页"
    return (
        "```html\n"
        "<!DOCTYPE html>\n<html>\n<body class=\"p-10\">\n"
        f"  <h1 class=\"text-3xl font-bold\">{heading}</h1>\n"
        "  <ul><li>核心概念</li><li>代表案例</li><li>后续展望</li></ul>\n"
        "</body>\n</html>\n"
        "```\n以上为页面代码。"
    )


async def mock_stream(
    messages: list[ChatMessage],
    *,
    tools: list[dict[str, Any]] | None = None,
    caller: str = "unknown",
) -> AsyncIterator[StreamChunk]:
    """Yield a canned stream shaped like the real response for ``caller``."""
    prompt = _last_user_text(messages)
    logger.info("[%s] MOCK stream (messages=%d, tools=%s)", caller, len(messages), bool(tools))

    if caller.startswith("outline"):
        async for chunk in _emit_text(_mock_outline(prompt), reasoning="先梳理主题结构，再拆分页面。"):
            yield chunk
        return

    if caller == "page_content" or caller == "modify_content":
        async for chunk in _emit_text(_mock_page_content(prompt)):
            yield chunk
        return

    if caller == "page_html" or caller == "modify_html":
        async for chunk in _emit_text(_mock_page_html(prompt)):
            yield chunk
        return

    if tools:
        # First chat pass: ask for a knowledge-base search
        args = json.dumps({"query": prompt[:100]}, ensure_ascii=False)
        yield StreamChunk(tool_calls=[ToolCallDelta(index=0, id="call_mock", name="search_knowledge_base")])
        for piece in _split(args):
            await asyncio.sleep(_CHUNK_DELAY)
            yield StreamChunk(tool_calls=[ToolCallDelta(index=0, arguments=piece)])
        return

    answer = f"根据检索结果，关于「{prompt[:40]}」的要点如下 [1]。"
    async for chunk in _emit_text(answer, reasoning="整理检索到的资料。"):
        yield chunk
