"""Pytest configuration helpers.

Puts `backend/` on `sys.path` so tests can import the `deckweaver` package
without an install, and provides a scripted stream source that stands in
for the LLM transport.
"""
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND = os.path.join(ROOT, "backend")
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

os.environ.setdefault("USE_MOCK_API", "false")

import asyncio  # noqa: E402

import pytest  # noqa: E402

from deckweaver.schemas.stream import StreamChunk, ToolCallDelta  # noqa: E402


def text_chunks(text, size=7):
    """Split ``text`` into content-only chunks."""
    return [StreamChunk(content=text[i:i + size]) for i in range(0, len(text), size)]


def tool_call_chunks(name, arguments, size=5):
    first = StreamChunk(tool_calls=[ToolCallDelta(index=0, id="call_1", name=name)])
    rest = [
        StreamChunk(tool_calls=[ToolCallDelta(index=0, arguments=arguments[i:i + size])])
        for i in range(0, len(arguments), size)
    ]
    return [first, *rest]


class ScriptedStream:
    """Fake stream source.

    Each call pops the next script (a list of chunks, or an exception to
    raise after the chunks in the list preceding it). Records every call
    and whether two calls were ever in flight at once.
    """

    def __init__(self, *scripts, delay=0):
        self.scripts = list(scripts)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = delay

    def __call__(self, messages, *, tools=None, model=None, caller="unknown", **kwargs):
        self.calls.append({"messages": list(messages), "tools": tools, "caller": caller})
        script = self.scripts.pop(0) if self.scripts else []
        return self._run(script)

    async def _run(self, script):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            for item in script:
                await asyncio.sleep(self.delay)
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.in_flight -= 1

    @property
    def callers(self):
        return [c["caller"] for c in self.calls]


@pytest.fixture
def scripted():
    return ScriptedStream
