"""Retrieval orchestrator: turn a tool intent into citations.

Two paths:
  * knowledge base: one semantic search, top-N segments become citations;
  * internet: reader-fetched search-results page → markdown links →
    concurrent fetch of each candidate → Content Validator → citations.

No failure in here propagates. A broken URL is dropped, a broken search
yields zero citations, and zero citations is a normal outcome that the
context formatter turns into an explicit marker.
"""

from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import quote_plus, urlparse

from deckweaver.config import get_settings
from deckweaver.schemas.chat import ChatMessage, Citation, TextDocument
from deckweaver.services.content_validator import is_valid
from deckweaver.services.retrieval_backends import ContentReader, KnowledgeSearch
from deckweaver.services.tool_intent import INTERNET_TOOL, ToolIntent

logger = logging.getLogger(__name__)

NO_RESULTS_MARKER = "未找到相关信息。"

_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")
_HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_TITLE_LINE_RE = re.compile(r"^Title:\s*(.+)$", re.MULTILINE)

# Hosts of the search engine and the reader itself; never candidates
EXCLUDED_HOSTS = ("google.com", "google.", "gstatic.com", "googleusercontent.com", "jina.ai")

_IMPORT_CHARS = 3000


def extract_links(markdown: str, limit: int) -> list[tuple[str, str]]:
    """Collect ``(title, url)`` pairs from markdown links, deduplicated and capped."""
    seen: set[str] = set()
    links: list[tuple[str, str]] = []
    for match in _LINK_RE.finditer(markdown or ""):
        title, url = match.group(1).strip(), match.group(2).strip()
        host = urlparse(url).netloc.lower()
        if not host or any(excluded in host for excluded in EXCLUDED_HOSTS):
            continue
        key = url.rstrip("/")
        if key in seen:
            continue
        seen.add(key)
        links.append((title, url))
        if len(links) >= limit:
            break
    return links


def guess_title(markdown: str, fallback: str) -> str:
    """First ``Title:`` line or ``# heading`` of a fetched page, else ``fallback``."""
    for pattern in (_TITLE_LINE_RE, _HEADING_RE):
        match = pattern.search(markdown or "")
        if match and match.group(1).strip():
            return match.group(1).strip()
    first_line = (markdown or "")[:50].strip().split("\n")[0].strip()
    return first_line or fallback


class RetrievalOrchestrator:
    """Dispatch a tool intent to a retrieval path and assemble citations."""

    def __init__(
        self,
        knowledge_search: KnowledgeSearch,
        reader: ContentReader,
        *,
        max_urls: int | None = None,
        concurrency: int | None = None,
        top_n: int | None = None,
    ):
        settings = get_settings()
        self.knowledge_search = knowledge_search
        self.reader = reader
        self.max_urls = max_urls or settings.RETRIEVAL_MAX_URLS
        self.concurrency = concurrency or settings.RETRIEVAL_CONCURRENCY
        self.top_n = top_n or settings.KB_TOP_N
        self.body_chars = settings.RETRIEVAL_BODY_CHARS
        self.snippet_chars = settings.RETRIEVAL_SNIPPET_CHARS
        self.search_url_template = settings.WEB_SEARCH_URL

    async def gather(self, intent: ToolIntent) -> list[Citation]:
        if intent.tool == INTERNET_TOOL:
            return await self.search_internet(intent.query)
        return await self.search_knowledge_base(intent.query)

    # ──────── Internal knowledge ────────

    async def search_knowledge_base(self, query: str) -> list[Citation]:
        try:
            items = await self.knowledge_search.search(query, self.top_n)
        except Exception as e:
            logger.warning("Knowledge base search failed for %r: %s", query[:60], e)
            return []

        citations = []
        for item in items[:self.top_n]:
            content = item.get("content") or ""
            citations.append(Citation(
                title=item.get("title") or "Untitled",
                url=item.get("url") or "",
                source=item.get("source") or "",
                snippet=content[:self.snippet_chars],
                body=content[:self.body_chars],
                score=item.get("score"),
                published=item.get("published") or "",
            ))
        return citations

    # ──────── Internet ────────

    def search_page_url(self, query: str) -> str:
        return self.search_url_template.format(query=quote_plus(query))

    async def search_internet(self, query: str) -> list[Citation]:
        search_url = self.search_page_url(query)
        try:
            listing = await self.reader.fetch(search_url)
        except Exception as e:
            logger.warning("Search results fetch failed for %r: %s", query[:60], e)
            return []

        links = extract_links(listing, self.max_urls)
        logger.info("Internet search %r: %d candidate URLs", query[:60], len(links))

        if not links:
            if not is_valid(listing):
                logger.info("Search results page for %r rejected by validator", query[:60])
                return []
            return [self._citation(f"搜索: {query}", search_url, listing)]

        sem = asyncio.Semaphore(max(1, self.concurrency))

        async def _one(title: str, url: str) -> Citation | None:
            async with sem:
                try:
                    body = await self.reader.fetch(url)
                except Exception as e:
                    logger.warning("Fetch failed for %s: %s", url, e)
                    return None
            if not is_valid(body):
                logger.debug("Dropped invalid page %s (%d chars)", url, len(body or ""))
                return None
            return self._citation(guess_title(body, title), url, body)

        results = await asyncio.gather(*[_one(title, url) for title, url in links])
        citations = [c for c in results if c is not None]
        logger.info(
            "Internet search %r: %d/%d pages usable", query[:60], len(citations), len(links),
        )
        return citations

    async def import_urls(self, urls: list[str]) -> list[Citation]:
        """Fetch user-supplied URLs for a reference bundle; failures are skipped."""
        sem = asyncio.Semaphore(max(1, self.concurrency))

        async def _one(url: str) -> Citation | None:
            async with sem:
                try:
                    body = await self.reader.fetch(url)
                except Exception as e:
                    logger.warning("URL import failed for %s: %s", url, e)
                    return None
            return Citation(
                title=guess_title(body, url),
                url=url,
                source=urlparse(url).netloc,
                snippet=body[:self.snippet_chars],
                body=body[:_IMPORT_CHARS],
            )

        cleaned = [u.strip() for u in urls if u.strip().startswith("http")]
        results = await asyncio.gather(*[_one(u) for u in cleaned])
        return [c for c in results if c is not None]

    def _citation(self, title: str, url: str, body: str) -> Citation:
        return Citation(
            title=title,
            url=url,
            source=urlparse(url).netloc,
            snippet=body[:self.snippet_chars],
            body=body[:self.body_chars],
        )


# ---------------------------------------------------------------------------
# Context formatting
# ---------------------------------------------------------------------------

def format_citation_context(query: str, citations: list[Citation]) -> str:
    """Render citations as numbered blocks for the second generation pass."""
    if not citations:
        blocks = NO_RESULTS_MARKER
    else:
        parts = []
        for idx, c in enumerate(citations, 1):
            lines = [f"[{idx}] Title: {c.title}", f"Source: {c.source or '-'}"]
            if c.published:
                lines.append(f"Date: {c.published}")
            if c.url:
                lines.append(f"URL: {c.url}")
            lines.append(f"Content: {c.body or c.snippet}")
            parts.append("\n".join(lines))
        blocks = "\n\n".join(parts)
    return (
        f"检索结果 (Query: \"{query}\"):\n{blocks}\n\n"
        "请根据以上检索到的事实回答用户。如果检索结果中包含数据，请务必准确引用。"
        "使用 [1], [2] 标注来源。"
    )


def citation_message(query: str, citations: list[Citation]) -> ChatMessage:
    return ChatMessage(role="system", content=format_citation_context(query, citations))


def format_reference_bundle(heading: str, citations: list[Citation]) -> str:
    """Fold citations into a plain-text block usable as topic reference material."""
    sections = [f"### 来源: {c.url or c.title}\n{c.body}" for c in citations]
    body = "\n\n".join(sections) if sections else NO_RESULTS_MARKER
    return f"--- {heading} ---\n{body}\n--- 引用结束 ---"


def document_citations(documents: list[TextDocument]) -> list[Citation]:
    """Uploaded text files as citations; nothing is fetched or validated."""
    settings = get_settings()
    return [
        Citation(
            title=doc.filename,
            source="upload",
            snippet=doc.text[:settings.RETRIEVAL_SNIPPET_CHARS],
            body=doc.text,
        )
        for doc in documents
    ]


def format_document_bundle(documents: list[TextDocument]) -> str:
    """Wrap each uploaded file in quote markers, in upload order."""
    return "".join(
        f"\n\n--- 引用文档: {doc.filename} ---\n{doc.text}\n--- 文档结束 ---\n" for doc in documents
    )
