"""Incremental structured extraction from a growing LLM buffer.

Every function here reads a full snapshot of the buffer and never raises:
callers re-run them on each chunk and replace their previous result with the
new one. Nothing is merged across calls.

    parse_structured       : best-effort (partial) JSON object
    extract_markup_block   : embedded HTML document, fenced or bare
    extract_thought_segments: <think> reasoning vs. user-facing content
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

_THINK_BLOCK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?(.*?)(?:```|$)", re.DOTALL)
_HTML_FENCE_RE = re.compile(r"```\s*html?\b[ \t]*\n?", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?")
_TAG_START_RE = re.compile(r"<!DOCTYPE\s+html|<html\b|<[a-zA-Z][a-zA-Z0-9-]*[\s>/]", re.IGNORECASE)

# Upper bound on cut-back attempts when repairing a truncated payload
_MAX_REPAIR_STEPS = 64

_DECODER = json.JSONDecoder()


# ---------------------------------------------------------------------------
# Reasoning split
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ThoughtSegments:
    reasoning: str
    content: str


def extract_thought_segments(raw: str) -> ThoughtSegments:
    """Split ``<think>`` reasoning from the user-facing content.

    Closed blocks are collected as reasoning. An opener without its closer
    (still streaming) turns everything after it into reasoning, and the
    content stops at that opener.
    """
    if not raw:
        return ThoughtSegments(reasoning="", content="")

    thoughts: list[str] = []
    parts: list[str] = []
    last_end = 0
    for match in _THINK_BLOCK_RE.finditer(raw):
        parts.append(raw[last_end:match.start()])
        thoughts.append(match.group(1).strip())
        last_end = match.end()

    tail = raw[last_end:]
    open_at = tail.find(THINK_OPEN)
    if open_at != -1:
        parts.append(tail[:open_at])
        thoughts.append(tail[open_at + len(THINK_OPEN):].strip())
    else:
        parts.append(tail)

    return ThoughtSegments(
        reasoning="\n".join(t for t in thoughts if t),
        content="".join(parts).strip(),
    )


def strip_reasoning(raw: str) -> str:
    """Return the buffer with every reasoning segment removed."""
    return extract_thought_segments(raw).content


# ---------------------------------------------------------------------------
# Partial JSON
# ---------------------------------------------------------------------------

def parse_structured(buffer: str | None) -> dict | list | None:
    """Best-effort parse of the JSON object embedded in ``buffer``.

    Order of attempts:
      1. the slice between the first ``{`` and the last ``}``;
      2. completion heuristics over the open-ended tail from the first ``{``
         (closes strings, arrays and objects truncated mid-stream);
      3. the body of a fenced code block.

    Returns None when nothing parseable is found.
    """
    if not buffer:
        return None
    try:
        text = strip_reasoning(buffer)
        start = _object_start(text)
        if start != -1:
            end = text.rfind("}")
            if end > start:
                value = _loads(text[start:end + 1])
                if isinstance(value, dict):
                    return value
                try:
                    value, _ = _DECODER.raw_decode(text, start)
                except ValueError:
                    value = None
                if isinstance(value, dict):
                    return value
            value = complete_json(text[start:])
            if isinstance(value, dict):
                return value
        return _parse_fenced(text)
    except Exception:  # never raises
        logger.debug("parse_structured gave up on buffer of length %d", len(buffer), exc_info=True)
        return None


def complete_json(fragment: str) -> Any | None:
    """Close a truncated JSON fragment and parse it.

    If the closed text still does not parse, cut back to the previous member
    boundary and retry.
    """
    text = fragment.rstrip()
    for _ in range(_MAX_REPAIR_STEPS):
        if not text:
            return None
        closed, boundaries = _close_fragment(text)
        value = _loads(closed)
        if value is not None:
            return value
        cut = _previous_boundary(text, boundaries)
        if cut is None:
            return None
        text = cut
    return None


def _object_start(text: str) -> int:
    """Index of the first ``{`` that can open a JSON object, or -1."""
    start = text.find("{")
    while start != -1:
        rest = text[start + 1:].lstrip()
        if not rest or rest[0] in '"}':
            return start
        start = text.find("{", start + 1)
    return -1


def _loads(text: str) -> Any | None:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, RecursionError, ValueError):
        return None


def _close_fragment(text: str) -> tuple[str, list[tuple[int, str]]]:
    """Append whatever closers ``text`` needs.

    Also returns the member boundaries seen outside strings, as
    ``(index, char)`` pairs where ``char`` is ``,``, ``{`` or ``[``.
    """
    stack: list[str] = []
    boundaries: list[tuple[int, str]] = []
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
            boundaries.append((i, ch))
        elif ch in "}]":
            if stack:
                stack.pop()
        elif ch == ",":
            boundaries.append((i, ch))

    closed = text
    if in_string:
        if escaped:
            closed = closed[:-1]
        closed += '"'
    else:
        closed = closed.rstrip()
        if closed.endswith(","):
            closed = closed[:-1]
        elif closed.endswith(":"):
            closed += "null"
    return closed + "".join(reversed(stack)), boundaries


def _previous_boundary(text: str, boundaries: list[tuple[int, str]]) -> str | None:
    """Trim ``text`` back to the last member boundary that shortens it."""
    for index, ch in reversed(boundaries):
        cut = text[:index] if ch == "," else text[:index + 1]
        if len(cut) < len(text):
            return cut
    return None


def _parse_fenced(text: str) -> dict | list | None:
    for match in _FENCE_RE.finditer(text):
        body = match.group(1).strip()
        if not body:
            continue
        value = _loads(body)
        if isinstance(value, (dict, list)):
            return value
    return None


# ---------------------------------------------------------------------------
# Markup
# ---------------------------------------------------------------------------

def extract_markup_block(buffer: str | None) -> str:
    """Extract an embedded HTML document from ``buffer``.

    Prefers a ```html fence, then any fence whose body starts with a tag,
    then the first tag boundary in unfenced text. A missing closing fence is
    fine (still streaming). Trailing fences and prose after the last ``>``
    are trimmed. Returns "" when no markup is present.
    """
    if not buffer:
        return ""
    try:
        text = strip_reasoning(buffer)

        fence = _HTML_FENCE_RE.search(text)
        if fence:
            return _trim_markup(_until_fence_close(text[fence.end():]))

        for fence in _ANY_FENCE_RE.finditer(text):
            body = _until_fence_close(text[fence.end():])
            if body.lstrip().startswith("<"):
                return _trim_markup(body)

        tag = _TAG_START_RE.search(text)
        if tag:
            return _trim_markup(text[tag.start():])
        return ""
    except Exception:
        logger.debug("extract_markup_block gave up on buffer of length %d", len(buffer), exc_info=True)
        return ""


def _until_fence_close(body: str) -> str:
    close = body.find("```")
    return body if close == -1 else body[:close]


def _trim_markup(markup: str) -> str:
    markup = markup.strip().rstrip("`").rstrip()
    end = markup.rfind(">")
    if end == -1:
        return markup
    return markup[:end + 1].strip()
