"""Streaming LLM client with multi-key round-robin and structured errors.

All generation in the pipeline goes through `llm_stream()`, which yields
`StreamChunk`s parsed from an OpenAI-compatible SSE response. Retries and
timeouts beyond the httpx client timeout are left to the transport.
"""

from __future__ import annotations

import itertools
import json
import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from deckweaver.config import get_settings
from deckweaver.schemas.chat import ChatMessage
from deckweaver.schemas.stream import StreamChunk, ToolCallDelta

logger = logging.getLogger(__name__)
settings = get_settings()


class StreamSource(Protocol):
    """Anything that turns a conversation into a stream of chunks."""

    def __call__(
        self,
        messages: list[ChatMessage],
        *,
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        caller: str = "unknown",
    ) -> AsyncIterator[StreamChunk]: ...


# ---------------------------------------------------------------------------
# Key pool: build once from config
# ---------------------------------------------------------------------------

def _build_key_pool() -> list[str]:
    """Parse OPENROUTER_API_KEYS (comma-separated) with OPENROUTER_API_KEY as fallback."""
    keys: list[str] = []
    if settings.OPENROUTER_API_KEYS:
        keys = [k.strip() for k in settings.OPENROUTER_API_KEYS.split(",") if k.strip()]
    if not keys and settings.OPENROUTER_API_KEY:
        keys = [settings.OPENROUTER_API_KEY]
    if not keys and not settings.USE_MOCK_API:
        logger.warning("No OpenRouter API keys configured: LLM calls will fail")
    return keys


_KEY_POOL: list[str] = _build_key_pool()
_key_cycle = itertools.cycle(_KEY_POOL) if _KEY_POOL else None

# Track per-key failure counts for smart rotation
_key_failures: dict[str, int] = {k: 0 for k in _KEY_POOL}

# ---------------------------------------------------------------------------
# Shared HTTP client (lazy init)
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(timeout=float(settings.LLM_TIMEOUT))
    return _http_client


async def close_client() -> None:
    """Close the shared HTTP client (application shutdown)."""
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


def _next_key() -> str:
    """Pick the next API key via round-robin, skipping keys with high failure counts."""
    if not _key_cycle:
        raise LLMError("No OpenRouter API keys configured", retriable=False)

    # Try up to len(pool) times to find a key with < 3 consecutive failures
    for _ in range(len(_KEY_POOL)):
        key = next(_key_cycle)
        if _key_failures.get(key, 0) < 3:
            return key

    # All keys have high failures: reset and return the next one anyway
    for k in _key_failures:
        _key_failures[k] = 0
    return next(_key_cycle)


def _mask_key(key: str) -> str:
    """Mask an API key for safe logging: show first 8 and last 4 chars."""
    if len(key) <= 16:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


_RETRIABLE_STATUS = {408, 429, 500, 502, 503, 504}

_DONE = "[DONE]"


# ---------------------------------------------------------------------------
# SSE parsing
# ---------------------------------------------------------------------------

def parse_sse_line(line: str) -> StreamChunk | None:
    """Parse one SSE line of a chat-completions stream.

    Returns None for keep-alives, comments, ``[DONE]`` and undecodable
    payloads. Raises LLMError when the provider reports an error mid-stream.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[5:].strip()
    if not payload or payload == _DONE:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    if "error" in data:
        err = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
        raise LLMError(
            f"Provider error: {err.get('message', 'unknown')}",
            status_code=int(err.get("code") or 0) if str(err.get("code", "")).isdigit() else 0,
            retriable=True,
        )

    choices = data.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}

    tool_calls = []
    for raw in delta.get("tool_calls") or []:
        fn = raw.get("function") or {}
        tool_calls.append(ToolCallDelta(
            index=raw.get("index", 0) or 0,
            id=raw.get("id"),
            name=fn.get("name"),
            arguments=fn.get("arguments"),
        ))

    chunk = StreamChunk(
        content=delta.get("content"),
        reasoning=delta.get("reasoning") or delta.get("reasoning_content"),
        tool_calls=tool_calls,
    )
    return None if chunk.is_empty else chunk


# ---------------------------------------------------------------------------
# Core streaming call
# ---------------------------------------------------------------------------

async def llm_stream(
    messages: list[ChatMessage],
    *,
    tools: list[dict[str, Any]] | None = None,
    model: str | None = None,
    max_tokens: int = 8192,
    temperature: float = 0.7,
    caller: str = "unknown",
) -> AsyncIterator[StreamChunk]:
    """Stream a chat completion as `StreamChunk`s.

    Args:
        messages: Conversation so far.
        tools: Optional OpenAI-style tool schemas.
        model: Override the default DECK_MODEL.
        max_tokens: Max tokens in response.
        temperature: Sampling temperature.
        caller: Identifier for logging (e.g. "outline", "page_content").

    Raises:
        LLMError: On HTTP failure, timeout, or a provider error event.
    """
    if settings.USE_MOCK_API:
        from deckweaver.services.mock_llm import mock_stream
        async for chunk in mock_stream(messages, tools=tools, caller=caller):
            yield chunk
        return

    model = model or settings.DECK_MODEL
    key = _next_key()
    masked = _mask_key(key)

    headers = {
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "HTTP-Referer": "https://deckweaver.app",
        "X-Title": "DeckWeaver",
    }
    body: dict[str, Any] = {
        "model": model,
        "messages": [m.model_dump() for m in messages],
        "temperature": temperature,
        "max_tokens": max_tokens,
        "stream": True,
    }
    if tools:
        body["tools"] = tools
        body["tool_choice"] = "auto"

    logger.info(
        "[%s] LLM stream model=%s key=%s messages=%d tools=%s",
        caller, model, masked, len(messages), bool(tools),
    )

    received = 0
    try:
        client = _get_client()
        async with client.stream("POST", settings.CHAT_COMPLETIONS_URL, headers=headers, json=body) as response:
            if response.status_code == 401:
                _key_failures[key] = _key_failures.get(key, 0) + 1
                logger.warning(
                    "[%s] 401 Unauthorized for key=%s (failures=%d)",
                    caller, masked, _key_failures[key],
                )
                raise LLMError(f"API key {masked} unauthorized", status_code=401, retriable=True)

            if response.status_code >= 400:
                detail = (await response.aread()).decode("utf-8", errors="replace")[:300]
                logger.error("[%s] HTTP %d: %s", caller, response.status_code, detail)
                raise LLMError(
                    f"LLM HTTP error {response.status_code}: {detail}",
                    status_code=response.status_code,
                    retriable=response.status_code in _RETRIABLE_STATUS,
                )

            _key_failures[key] = 0
            async for line in response.aiter_lines():
                chunk = parse_sse_line(line)
                if chunk is None:
                    continue
                received += 1
                yield chunk

    except httpx.TimeoutException as e:
        logger.warning("[%s] Stream timed out after %d chunks", caller, received)
        raise LLMError(
            f"LLM stream timed out after {settings.LLM_TIMEOUT}s",
            status_code=408,
            retriable=True,
        ) from e
    except httpx.HTTPError as e:
        logger.warning("[%s] Stream transport error after %d chunks: %s", caller, received, e)
        raise LLMError(f"LLM stream interrupted: {e}", retriable=True) from e

    logger.info("[%s] LLM stream complete, chunks=%d", caller, received)


# ---------------------------------------------------------------------------
# Health check: for /api/system/check-llm
# ---------------------------------------------------------------------------

async def check_llm_health() -> dict[str, Any]:
    """Quick health check: send a tiny prompt to verify keys are valid.

    Returns dict with status, working_keys, failed_keys.
    """
    results: dict[str, Any] = {
        "total_keys": len(_KEY_POOL),
        "working_keys": [],
        "failed_keys": [],
        "mock": settings.USE_MOCK_API,
    }

    for key in _KEY_POOL:
        masked = _mask_key(key)
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": settings.DECK_MODEL,
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 1,
        }
        try:
            client = _get_client()
            resp = await client.post(settings.CHAT_COMPLETIONS_URL, headers=headers, json=body)
            if resp.status_code == 200:
                results["working_keys"].append(masked)
            else:
                results["failed_keys"].append({"key": masked, "status": resp.status_code})
        except httpx.HTTPError as e:
            results["failed_keys"].append({"key": masked, "error": str(e)})

    results["status"] = "ok" if results["working_keys"] or settings.USE_MOCK_API else "all_keys_failed"
    return results


# ---------------------------------------------------------------------------
# Custom exception
# ---------------------------------------------------------------------------

class LLMError(Exception):
    """Structured LLM error with status code and retriable flag."""

    def __init__(self, message: str, status_code: int = 0, retriable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable
