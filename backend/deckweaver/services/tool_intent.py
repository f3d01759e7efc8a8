"""Tool-intent classifier for the first pass of a chat turn.

The model may ask for a search in several ways: a native ``tool_calls``
delta, a JSON object typed into the content, or something JSON-ish that does
not parse. `classify()` walks an ordered rule table and returns the first
match. Earlier rules always win:

    #  source    evidence                                     query          tool
    1  native    native tool-call delta with a name           arguments.query from name
    2  json      payload-looking buffer parses to an object   "query" field  from name
                 naming a tool and/or query
    3  regex     payload does not parse; "tool"/"query"       matched        from name
                 fields found by regex
    4  keyword   payload-looking buffer with tool-ish keys,   user text      inferred
                 or empty answer + explicit search cue

A missing query falls back to the user's text. A missing or unknown tool
name is inferred from recency cues (internet) vs. everything else
(knowledge base).
"""

from __future__ import annotations

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from deckweaver.services.extractor import parse_structured
from deckweaver.services.stream_buffer import AccumulatedBuffer

logger = logging.getLogger(__name__)

KB_TOOL = "search_knowledge_base"
INTERNET_TOOL = "search_internet"
TOOL_NAMES = (KB_TOOL, INTERNET_TOOL)

_TOOL_ALIASES = {
    "knowledge_base": KB_TOOL,
    "search_kb": KB_TOOL,
    "kb_search": KB_TOOL,
    "internal_search": KB_TOOL,
    "web_search": INTERNET_TOOL,
    "search_web": INTERNET_TOOL,
    "internet_search": INTERNET_TOOL,
    "google_search": INTERNET_TOOL,
    "search_online": INTERNET_TOOL,
}

_TOOL_KEYS = ("tool", "tool_name", "name", "function", "action")
_QUERY_KEYS = ("query", "q", "search_query", "keyword", "keywords")

_RECENCY_CUES = ("最新", "今天", "近期", "新闻", "latest", "today", "recent", "news")
_YEAR_RE = re.compile(r"(?<!\d)(20[2-9]\d)(?!\d)")

_SEARCH_CUES = ("联网搜索", "搜索一下", "上网查", "search the web", "search online", "look up")

# a tool-ish key, quoted or not
_TOOLISH_KEY_RE = re.compile(r"""(?<![\w])["']?(?:tool|tool_name|query|search_query)["']?\s*:""", re.IGNORECASE)

_TOOL_FIELD_RE = re.compile(r'"(?:tool|tool_name|name|function|action)"\s*:\s*"([^"\\]*)')
_QUERY_FIELD_RE = re.compile(r'"(?:query|q|search_query|keyword)"\s*:\s*"((?:[^"\\]|\\.)*)')


class IntentSource(str, enum.Enum):
    """Which rule produced a tool intent, in precedence order."""

    NATIVE = "native"
    JSON = "json"
    REGEX = "regex"
    KEYWORD = "keyword"


@dataclass(frozen=True)
class ToolIntent:
    tool: str
    query: str
    source: IntentSource


# ---------------------------------------------------------------------------
# Tool schemas offered to the model
# ---------------------------------------------------------------------------

@dataclass
class SearchTool:
    """A search capability advertised to the model."""
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search keywords"},
        },
        "required": ["query"],
    })

    def to_openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


SEARCH_TOOLS = (
    SearchTool(
        name=KB_TOOL,
        description="Search the internal intelligence knowledge base for facts, "
                    "reports and archived articles.",
    ),
    SearchTool(
        name=INTERNET_TOOL,
        description="Search the public internet for recent news and up-to-date information.",
    ),
)

TOOLS: list[dict[str, Any]] = [t.to_openai_schema() for t in SEARCH_TOOLS]


# ---------------------------------------------------------------------------
# Cues
# ---------------------------------------------------------------------------

def infer_tool(text: str) -> str:
    """Internet search for recency language, knowledge base otherwise."""
    lowered = (text or "").lower()
    if any(cue in lowered for cue in _RECENCY_CUES):
        return INTERNET_TOOL
    for match in _YEAR_RE.finditer(lowered):
        if int(match.group(1)) >= 2024:
            return INTERNET_TOOL
    return KB_TOOL


def known_tool(name: str | None) -> str | None:
    """Canonical tool for ``name``, or None when it names no search tool."""
    if not name:
        return None
    key = name.strip().lower()
    if key in TOOL_NAMES:
        return key
    return _TOOL_ALIASES.get(key)


def resolve_tool(name: str | None, hint_text: str) -> str:
    return known_tool(name) or infer_tool(hint_text)


def looks_like_tool_payload(text: str) -> bool:
    """True when the visible answer starts like a JSON object."""
    head = (text or "").lstrip()
    return head.startswith("{") or head.lower().startswith("```json")


def intent_pending(buffer: AccumulatedBuffer) -> bool:
    """Whether user-facing content should be held back for this buffer."""
    return buffer.tool_calls.started or looks_like_tool_payload(buffer.visible)


def has_search_cue(text: str) -> bool:
    lowered = (text or "").lower()
    return any(cue in lowered for cue in _SEARCH_CUES)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def _first_string(payload: dict, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_tool(payload: dict) -> str | None:
    for key in _TOOL_KEYS:
        value = payload.get(key)
        tool = known_tool(value) if isinstance(value, str) else None
        if tool:
            return tool
    return None


def _native_rule(buffer: AccumulatedBuffer, user_text: str) -> ToolIntent | None:
    call = buffer.tool_calls.first
    if call is None or not call.name:
        return None
    args: Any = None
    if call.arguments:
        try:
            args = json.loads(call.arguments)
        except json.JSONDecodeError:
            args = parse_structured(call.arguments)
    query = _first_string(args, _QUERY_KEYS) if isinstance(args, dict) else None
    query = query or user_text
    return ToolIntent(resolve_tool(call.name, query), query, IntentSource.NATIVE)


def _json_rule(buffer: AccumulatedBuffer, user_text: str) -> ToolIntent | None:
    text = buffer.visible
    if not looks_like_tool_payload(text):
        return None
    payload = parse_structured(text)
    if not isinstance(payload, dict):
        return None

    tool = _first_tool(payload)
    args = payload.get("arguments") or payload.get("parameters") or payload.get("args")
    if isinstance(args, str):
        args = parse_structured(args)
    query = _first_string(payload, _QUERY_KEYS)
    if query is None and isinstance(args, dict):
        query = _first_string(args, _QUERY_KEYS)

    # an object with only generic keys ("name", "action", ...) is an answer
    if tool is None and query is None:
        return None
    query = query or user_text
    return ToolIntent(tool or infer_tool(query), query, IntentSource.JSON)


def _regex_rule(buffer: AccumulatedBuffer, user_text: str) -> ToolIntent | None:
    text = buffer.visible
    if not looks_like_tool_payload(text):
        return None
    tools = (known_tool(m.group(1)) for m in _TOOL_FIELD_RE.finditer(text))
    tool = next((t for t in tools if t), None)
    query_match = _QUERY_FIELD_RE.search(text)
    if tool is None and query_match is None:
        return None
    query = query_match.group(1).replace('\\"', '"').strip() if query_match else ""
    query = query or user_text
    return ToolIntent(tool or infer_tool(query), query, IntentSource.REGEX)


def _keyword_rule(buffer: AccumulatedBuffer, user_text: str) -> ToolIntent | None:
    text = buffer.visible
    if looks_like_tool_payload(text):
        if _TOOLISH_KEY_RE.search(text):
            return ToolIntent(infer_tool(user_text), user_text, IntentSource.KEYWORD)
        return None
    if not text.strip() and has_search_cue(user_text):
        return ToolIntent(infer_tool(user_text), user_text, IntentSource.KEYWORD)
    return None


Rule = Callable[[AccumulatedBuffer, str], "ToolIntent | None"]

RULES: tuple[tuple[IntentSource, Rule], ...] = (
    (IntentSource.NATIVE, _native_rule),
    (IntentSource.JSON, _json_rule),
    (IntentSource.REGEX, _regex_rule),
    (IntentSource.KEYWORD, _keyword_rule),
)


def classify(buffer: AccumulatedBuffer, user_text: str) -> ToolIntent | None:
    """Return the tool intent expressed by a finished first-pass buffer, if any."""
    for source, rule in RULES:
        intent = rule(buffer, user_text)
        if intent is not None:
            logger.info("Tool intent via %s: tool=%s query=%r", source.value, intent.tool, intent.query[:80])
            return intent
    return None
