import httpx
import pytest

from conftest import ScriptedStream, text_chunks, tool_call_chunks

from deckweaver.schemas.chat import Citation
from deckweaver.services.chat_assistant import CONNECTION_ERROR_NOTICE, SEARCHING, ChatSession
from deckweaver.services.errors import GenerationBusyError
from deckweaver.services.tool_intent import INTERNET_TOOL, KB_TOOL, IntentSource


class FakeOrchestrator:
    def __init__(self, citations=None):
        self.citations = citations or []
        self.intents = []

    async def gather(self, intent):
        self.intents.append(intent)
        return list(self.citations)


CITATIONS = [
    Citation(title="固态电池白皮书", url="https://a.example.com", source="a.example.com", body="正文一"),
    Citation(title="产业观察", url="https://b.example.com", source="b.example.com", body="正文二"),
]


@pytest.mark.asyncio
async def test_plain_answer_is_a_single_pass():
    stream = ScriptedStream(text_chunks("固态电池使用固体电解质。"))
    orchestrator = FakeOrchestrator()
    chat = ChatSession(orchestrator, stream_fn=stream)

    turn = await chat.ask("什么是固态电池")

    assert turn.content == "固态电池使用固体电解质。"
    assert turn.citations == []
    assert stream.callers == ["chat"]
    assert stream.calls[0]["tools"]
    assert orchestrator.intents == []
    assert [t.role for t in chat.turns] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_native_tool_call_triggers_retrieval_and_second_pass():
    stream = ScriptedStream(
        tool_call_chunks(KB_TOOL, '{"query": "固态电解质"}'),
        text_chunks("根据资料 [1]，固态电解质更安全 [2]。"),
    )
    orchestrator = FakeOrchestrator(CITATIONS)
    chat = ChatSession(orchestrator, stream_fn=stream)
    updates = []

    turn = await chat.ask("介绍一下固态电解质", on_update=updates.append)

    assert orchestrator.intents[0].tool == KB_TOOL
    assert orchestrator.intents[0].query == "固态电解质"
    assert orchestrator.intents[0].source is IntentSource.NATIVE
    assert turn.citations == CITATIONS
    assert turn.content == "根据资料 [1]，固态电解质更安全 [2]。"
    assert turn.status is None
    assert stream.callers == ["chat", "chat_answer"]
    assert stream.calls[1]["tools"] is None
    context = stream.calls[1]["messages"][-1]
    assert context.role == "system"
    assert "固态电池白皮书" in context.content
    assert any(u.status == SEARCHING and u.content == "" for u in updates)


@pytest.mark.asyncio
async def test_textual_tool_payload_is_never_shown():
    stream = ScriptedStream(
        text_chunks('{"tool": "search_internet", "query": "2025 储能装机"}'),
        text_chunks("今年装机量创新高。"),
    )
    orchestrator = FakeOrchestrator()
    chat = ChatSession(orchestrator, stream_fn=stream)
    updates = []

    turn = await chat.ask("今年储能装机多少", on_update=updates.append)

    assert orchestrator.intents[0].tool == INTERNET_TOOL
    assert all("search_internet" not in u.content for u in updates)
    assert turn.content == "今年装机量创新高。"


@pytest.mark.asyncio
async def test_transport_failure_is_absorbed_into_the_turn():
    stream = ScriptedStream(text_chunks("部分回答") + [httpx.ReadError("peer closed")])
    chat = ChatSession(FakeOrchestrator(), stream_fn=stream)

    turn = await chat.ask("问题")

    assert turn.error == "peer closed"
    assert turn.content.startswith("部分回答")
    assert turn.content.endswith(CONNECTION_ERROR_NOTICE)
    assert turn.status is None
    assert not chat.guard.busy


@pytest.mark.asyncio
async def test_failed_turns_are_left_out_of_later_context():
    stream = ScriptedStream([httpx.ConnectError("down")], text_chunks("第二次回答"))
    chat = ChatSession(FakeOrchestrator(), stream_fn=stream)

    await chat.ask("第一问")
    await chat.ask("第二问")

    sent = stream.calls[1]["messages"]
    assert [m.role for m in sent] == ["system", "user"]
    assert sent[-1].content == "第二问"


@pytest.mark.asyncio
async def test_context_keeps_answered_pairs_and_alternates():
    stream = ScriptedStream(
        text_chunks("回答一"), [httpx.ReadError("reset")], text_chunks("回答三"),
    )
    chat = ChatSession(FakeOrchestrator(), stream_fn=stream)

    for question in ("问一", "问二", "问三"):
        await chat.ask(question)

    sent = stream.calls[2]["messages"]
    assert [(m.role, m.content) for m in sent[1:]] == [
        ("user", "问一"), ("assistant", "回答一"), ("user", "问三"),
    ]


@pytest.mark.asyncio
async def test_plain_json_answer_is_kept():
    answer = '{"name": "张三", "age": 30}'
    stream = ScriptedStream(text_chunks(answer), text_chunks("不应出现"))
    orchestrator = FakeOrchestrator(CITATIONS)
    chat = ChatSession(orchestrator, stream_fn=stream)

    turn = await chat.ask("请用 JSON 给出一个人物示例")

    assert turn.content == answer
    assert turn.citations == []
    assert stream.callers == ["chat"]
    assert orchestrator.intents == []


@pytest.mark.asyncio
async def test_observers_and_busy_guard():
    chat = ChatSession(FakeOrchestrator(), stream_fn=ScriptedStream(text_chunks("好")))
    seen = []
    unsubscribe = chat.subscribe(seen.append)

    with chat.guard.acquire("other"):
        with pytest.raises(GenerationBusyError):
            await chat.ask("x")
        assert chat.read().busy

    await chat.ask("你好")
    unsubscribe()

    assert seen[-1].content == "好"
    assert chat.read().turns[-1].content == "好"
