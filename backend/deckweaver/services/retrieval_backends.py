"""HTTP adapters for the two retrieval collaborators.

    SemanticSearchClient: internal knowledge base (segment-level semantic search)
    JinaReader          : URL → markdown through the Jina reader proxy

Both accept an optional ``httpx.AsyncClient`` so tests can plug in a
``MockTransport``; otherwise they own a lazily created client.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from deckweaver.config import get_settings

logger = logging.getLogger(__name__)


class KnowledgeSearch(Protocol):
    async def search(self, query: str, limit: int) -> list[dict[str, Any]]: ...


class ContentReader(Protocol):
    async def fetch(self, url: str) -> str: ...


class _HttpAdapter:
    def __init__(self, client: httpx.AsyncClient | None, timeout: float):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()


class SemanticSearchClient(_HttpAdapter):
    """Query the intelligence segment search endpoint.

    Results are normalized to ``{title, content, source, score, url,
    published}`` dicts, ranked as returned by the service.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        similarity_threshold: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        super().__init__(client, float(settings.READER_TIMEOUT))
        self.url = url or settings.KB_SEARCH_URL
        self.similarity_threshold = (
            settings.KB_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )

    async def search(self, query: str, limit: int) -> list[dict[str, Any]]:
        body = {
            "query_text": query,
            "page": 1,
            "page_size": limit,
            "similarity_threshold": self.similarity_threshold,
        }
        resp = await self._get_client().post(self.url, json=body)
        resp.raise_for_status()
        data = resp.json()
        items = data.get("items") if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []

        results: list[dict[str, Any]] = []
        for item in items[:limit]:
            if not isinstance(item, dict):
                continue
            results.append({
                "title": item.get("title") or "",
                "content": item.get("content") or "",
                "source": item.get("source_name") or item.get("source") or "",
                "score": item.get("similarity", item.get("score")),
                "url": item.get("original_url") or item.get("url") or "",
                "published": item.get("publish_date") or "",
            })
        logger.info("Knowledge base search %r -> %d segments", query[:60], len(results))
        return results


class JinaReader(_HttpAdapter):
    """Fetch any URL as markdown through ``r.jina.ai``."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        super().__init__(client, float(settings.READER_TIMEOUT))
        self.base_url = (base_url or settings.JINA_READER_BASE).rstrip("/")
        self.api_key = settings.JINA_API_KEY if api_key is None else api_key

    def reader_url(self, url: str) -> str:
        return f"{self.base_url}/{url}"

    async def fetch(self, url: str) -> str:
        headers = {"X-Return-Format": "markdown"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        resp = await self._get_client().get(self.reader_url(url), headers=headers)
        resp.raise_for_status()
        return resp.text
