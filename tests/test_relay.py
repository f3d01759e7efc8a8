import asyncio
import logging

import pytest

from deckweaver.api import deps
from deckweaver.api.deps import relay_events
from deckweaver.services.errors import GenerationError


class Publisher:
    def __init__(self):
        self.observers = []

    def subscribe(self, observer):
        self.observers.append(observer)
        return lambda: self.observers.remove(observer)

    def publish(self, state):
        for observer in list(self.observers):
            observer(state)


@pytest.mark.asyncio
async def test_relay_ends_with_done():
    pub = Publisher()

    async def action():
        pub.publish({"step": 1})
        await asyncio.sleep(0)
        return {"ok": True}

    events = [e async for e in relay_events(pub.subscribe, action())]

    assert events[-1].startswith("event: done")
    assert pub.observers == []


@pytest.mark.asyncio
async def test_disconnected_client_keeps_action_and_logs_its_failure(caplog):
    pub = Publisher()
    release = asyncio.Event()

    async def action():
        pub.publish({"step": 1})
        await release.wait()
        raise GenerationError("late failure")

    relay = relay_events(pub.subscribe, action())
    first = await relay.__anext__()
    assert first.startswith("event: snapshot")

    await relay.aclose()
    assert len(deps._background_tasks) == 1
    task = next(iter(deps._background_tasks))

    with caplog.at_level(logging.WARNING, logger="deckweaver.api.deps"):
        release.set()
        with pytest.raises(GenerationError):
            await task
        await asyncio.sleep(0)

    assert deps._background_tasks == set()
    assert "late failure" in caplog.text
