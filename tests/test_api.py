import json

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedStream, text_chunks, tool_call_chunks

from deckweaver.api.deps import get_orchestrator, get_stream_source
from deckweaver.main import app
from deckweaver.schemas.chat import Citation

OUTLINE = {"title": "固态电池技术综述", "pages": [{"title": "概述", "summary": "定义与分类"}]}


class FakeOrchestrator:
    def __init__(self):
        self.intents = []

    async def gather(self, intent):
        self.intents.append(intent)
        return [Citation(title="白皮书", url="https://a.example.com", source="a.example.com", body="正文")]

    async def import_urls(self, urls):
        return [Citation(title=u, url=u, body="正文") for u in urls if u.startswith("http")]


@pytest.fixture
def api():
    holder = {"stream": ScriptedStream(), "orchestrator": FakeOrchestrator()}
    app.dependency_overrides[get_stream_source] = lambda: holder["stream"]
    app.dependency_overrides[get_orchestrator] = lambda: holder["orchestrator"]
    client = TestClient(app)
    client.holder = holder
    yield client
    app.dependency_overrides.clear()


def parse_events(body):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if ": " in line)
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def create_session(api, *scripts):
    api.holder["stream"] = ScriptedStream(*scripts)
    response = api.post("/api/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


def outline_script():
    return text_chunks(json.dumps(OUTLINE, ensure_ascii=False), 6)


def test_health(api):
    assert api.get("/health").json()["status"] == "healthy"


def test_topic_streams_snapshots_then_done(api):
    session_id = create_session(api, outline_script())

    response = api.post(f"/api/sessions/{session_id}/topic", json={"topic": "固态电池"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = parse_events(response.text)
    assert events[-1][0] == "done"
    assert events[-1][1]["title"] == "固态电池技术综述"
    assert all(name == "snapshot" for name, _ in events[:-1])
    assert api.get(f"/api/sessions/{session_id}").json()["stage"] == "outlining"


def test_failed_generation_ends_with_error_event(api):
    session_id = create_session(api, text_chunks("没有大纲"))

    events = parse_events(api.post(f"/api/sessions/{session_id}/topic", json={"topic": "x"}).text)

    assert events[-1][0] == "error"
    assert events[-1][1]["status"] == 502
    assert events[-1][1]["error"] == "GenerationError"
    assert api.get(f"/api/sessions/{session_id}").json()["stage"] == "collecting"


def test_full_pipeline(api):
    session_id = create_session(
        api,
        outline_script(),
        text_chunks(json.dumps({"content": "## 概述\n固态电解质"}, ensure_ascii=False)),
        text_chunks("```html\n<section>概述</section>\n```"),
    )
    base = f"/api/sessions/{session_id}"
    api.post(f"{base}/topic", json={"topic": "固态电池"})

    confirmed = api.post(f"{base}/outline/confirm").json()
    assert confirmed["stage"] == "composing"
    assert confirmed["pages"][0]["content"] == ""

    events = parse_events(api.post(f"{base}/passes/text").text)
    assert events[-1] == ("done", {"field": "content", "completed": [0], "failed": [], "skipped": []})

    assert api.post(f"{base}/finalize").json()["stage"] == "finalizing"
    events = parse_events(api.post(f"{base}/passes/markup").text)
    assert events[-1][1]["completed"] == [0]

    snapshot = api.get(base).json()
    assert snapshot["pages"][0]["html"] == "<section>概述</section>"
    assert api.post(f"{base}/back").json()["stage"] == "composing"


def test_wrong_stage_is_conflict(api):
    session_id = create_session(api)
    base = f"/api/sessions/{session_id}"

    response = api.post(f"{base}/outline/confirm")
    assert response.status_code == 409
    assert response.json()["error"] == "StageTransitionError"
    assert api.post(f"{base}/passes/text").status_code == 409
    assert api.post(f"{base}/outline/revise", json={"instruction": "x"}).status_code == 409


def test_markup_pass_with_missing_content_is_conflict(api):
    session_id = create_session(api, outline_script())
    base = f"/api/sessions/{session_id}"
    api.post(f"{base}/topic", json={"topic": "固态电池"})
    api.post(f"{base}/outline/confirm")
    api.post(f"{base}/finalize")

    response = api.post(f"{base}/passes/markup")
    assert response.status_code == 409
    assert response.json()["error"] == "QueueOrderError"


def test_unknown_session_and_page(api):
    assert api.get("/api/sessions/nope").status_code == 404

    session_id = create_session(api, outline_script())
    base = f"/api/sessions/{session_id}"
    api.post(f"{base}/topic", json={"topic": "固态电池"})
    api.post(f"{base}/outline/confirm")
    assert api.post(f"{base}/pages/5/select").status_code == 404


def test_manual_edit(api):
    session_id = create_session(api, outline_script())
    base = f"/api/sessions/{session_id}"
    api.post(f"{base}/topic", json={"topic": "固态电池"})
    api.post(f"{base}/outline/confirm")

    assert api.patch(f"{base}/pages/0", json={}).status_code == 400
    edited = api.patch(f"{base}/pages/0", json={"content": "手写"}).json()
    assert edited["pages"][0]["content"] == "手写"


def test_delete_session(api):
    session_id = create_session(api)
    assert api.delete(f"/api/sessions/{session_id}").status_code == 204
    assert api.get(f"/api/sessions/{session_id}").status_code == 404


def test_chat_ask_streams_turns(api):
    api.holder["stream"] = ScriptedStream(
        tool_call_chunks("search_internet", '{"query": "固态电池 2025"}'),
        text_chunks("据报道 [1]，量产在即。"),
        delay=0.01,
    )
    chat_id = api.post("/api/chats").json()["chat_id"]

    events = parse_events(api.post(f"/api/chats/{chat_id}/ask", json={"message": "固态电池最新进展"}).text)

    assert events[-1][0] == "done"
    final = events[-1][1]
    assert final["content"] == "据报道 [1]，量产在即。"
    assert final["citations"][0]["title"] == "白皮书"
    assert any(data["status"] == "searching" for name, data in events if name == "turn")
    turns = api.get(f"/api/chats/{chat_id}").json()["turns"]
    assert [t["role"] for t in turns] == ["user", "assistant"]


def test_reference_bundles(api):
    bundle = api.post("/api/references/search", json={"query": "钠电池", "tool": "search_knowledge_base"}).json()
    assert bundle["citations"][0]["title"] == "白皮书"
    assert "钠电池" in bundle["text"]
    assert api.holder["orchestrator"].intents[0].tool == "search_knowledge_base"

    imported = api.post("/api/references/urls", json={"urls": ["https://x.example.com"]}).json()
    assert [c["url"] for c in imported["citations"]] == ["https://x.example.com"]

    assert api.post("/api/references/urls", json={"urls": []}).status_code == 422


def test_styles_listing(api):
    styles = api.get("/api/system/styles").json()
    names = [s["name"] for s in styles["styles"]]
    assert "default" in names
    assert "briefing" in names


def test_reference_files_bundle(api):
    docs = [
        {"filename": "市场数据.csv", "text": "年份,装机量\n2024,35GW"},
        {"filename": "notes.MD", "text": "# 会议纪要\n要点"},
    ]
    bundle = api.post("/api/references/files", json={"documents": docs}).json()

    assert [c["title"] for c in bundle["citations"]] == ["市场数据.csv", "notes.MD"]
    assert all(c["source"] == "upload" for c in bundle["citations"])
    assert "--- 引用文档: 市场数据.csv ---\n年份,装机量\n2024,35GW\n--- 文档结束 ---" in bundle["text"]
    assert bundle["text"].index("市场数据.csv") < bundle["text"].index("notes.MD")
    assert api.holder["orchestrator"].intents == []


@pytest.mark.parametrize("documents", [
    [],
    [{"filename": "slides.pdf", "text": "x"}],
    [{"filename": "noext", "text": "x"}],
])
def test_reference_files_rejects_bad_input(api, documents):
    assert api.post("/api/references/files", json={"documents": documents}).status_code == 422
