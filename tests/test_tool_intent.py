import json

import pytest

from conftest import text_chunks, tool_call_chunks

from deckweaver.services.stream_buffer import AccumulatedBuffer
from deckweaver.services.tool_intent import (
    INTERNET_TOOL,
    KB_TOOL,
    RULES,
    TOOLS,
    IntentSource,
    classify,
    infer_tool,
    intent_pending,
)


def buffer_of(chunks):
    buffer = AccumulatedBuffer()
    for chunk in chunks:
        buffer.feed(chunk)
    return buffer


def test_rule_table_order():
    assert [source for source, _ in RULES] == [
        IntentSource.NATIVE, IntentSource.JSON, IntentSource.REGEX, IntentSource.KEYWORD,
    ]


def test_tool_schemas():
    names = [t["function"]["name"] for t in TOOLS]
    assert names == [KB_TOOL, INTERNET_TOOL]
    assert TOOLS[0]["function"]["parameters"]["required"] == ["query"]


def test_native_call():
    buffer = buffer_of(tool_call_chunks(KB_TOOL, json.dumps({"query": "钠离子电池"}, ensure_ascii=False)))
    intent = classify(buffer, "user asks something")
    assert intent.source is IntentSource.NATIVE
    assert intent.tool == KB_TOOL
    assert intent.query == "钠离子电池"


def test_native_wins_over_textual_hint():
    chunks = text_chunks('{"tool": "search_internet", "query": "text hint"}')
    chunks += tool_call_chunks(KB_TOOL, '{"query": "native query"}')
    intent = classify(buffer_of(chunks), "user text")
    assert intent.source is IntentSource.NATIVE
    assert intent.tool == KB_TOOL
    assert intent.query == "native query"


def test_native_without_query_uses_user_text():
    intent = classify(buffer_of(tool_call_chunks(INTERNET_TOOL, "{}")), "今天的储能新闻")
    assert intent.query == "今天的储能新闻"
    assert intent.tool == INTERNET_TOOL


def test_json_payload():
    intent = classify(buffer_of(text_chunks('{"tool": "search_internet", "query": "2025 储能装机"}')), "q")
    assert intent.source is IntentSource.JSON
    assert intent.tool == INTERNET_TOOL
    assert intent.query == "2025 储能装机"


def test_json_payload_with_nested_arguments():
    payload = '```json\n{"name": "search_knowledge_base", "arguments": {"query": "电解质"}}\n```'
    intent = classify(buffer_of(text_chunks(payload)), "q")
    assert intent.source is IntentSource.JSON
    assert intent.tool == KB_TOOL
    assert intent.query == "电解质"


def test_json_payload_without_tool_infers_it():
    intent = classify(buffer_of(text_chunks('{"query": "latest battery news"}')), "q")
    assert intent.tool == INTERNET_TOOL


def test_regex_when_payload_does_not_parse():
    buffer = buffer_of(text_chunks("{'x' \"tool\": \"search_knowledge_base\", \"query\": \"固态\""))
    intent = classify(buffer, "user text")
    assert intent.source is IntentSource.REGEX
    assert intent.tool == KB_TOOL
    assert intent.query == "固态"


def test_keyword_on_payload_with_toolish_keys():
    buffer = buffer_of(text_chunks("{tool: web, query: 电池"))
    intent = classify(buffer, "最新的电池新闻")
    assert intent.source is IntentSource.KEYWORD
    assert intent.query == "最新的电池新闻"
    assert intent.tool == INTERNET_TOOL


def test_keyword_on_empty_answer_with_search_cue():
    intent = classify(buffer_of([]), "帮我联网搜索一下固态电池")
    assert intent.source is IntentSource.KEYWORD
    assert intent.query == "帮我联网搜索一下固态电池"


def test_plain_answer_has_no_intent():
    buffer = buffer_of(text_chunks("固态电池是一种使用固体电解质的电池。"))
    assert classify(buffer, "什么是固态电池") is None
    assert not intent_pending(buffer)


def test_json_answer_without_tool_fields_has_no_intent():
    assert classify(buffer_of(text_chunks('{"answer": "42"}')), "q") is None


@pytest.mark.parametrize("text,tool", [
    ("最新政策", INTERNET_TOOL),
    ("today in AI", INTERNET_TOOL),
    ("2025年市场规模", INTERNET_TOOL),
    ("2019年市场规模", KB_TOOL),
    ("固态电池原理", KB_TOOL),
])
def test_infer_tool(text, tool):
    assert infer_tool(text) == tool


def test_pending_detection():
    assert intent_pending(buffer_of(text_chunks('{"tool"')))
    assert intent_pending(buffer_of(tool_call_chunks(KB_TOOL, "")))
    assert not intent_pending(buffer_of(text_chunks("<think>{ hmm")))


@pytest.mark.parametrize("answer", [
    '{"name": "张三", "age": 30}',
    '{"action": "summarize", "result": "done"}',
    '{"function": "f(x) = x^2", "domain": "R"}',
])
def test_json_answer_with_generic_keys_has_no_intent(answer):
    assert classify(buffer_of(text_chunks(answer)), "请用 JSON 给出一个人物示例") is None


def test_json_answer_mentioning_search_has_no_intent():
    buffer = buffer_of(text_chunks('{"summary": "The search results show growth", "tool_count": 3}'))
    assert classify(buffer, "总结一下") is None


def test_generic_name_key_does_not_hide_a_real_tool():
    payload = '{"name": "lookup", "function": "web_search", "arguments": {"query": "钠电池"}}'
    intent = classify(buffer_of(text_chunks(payload)), "q")
    assert intent.tool == INTERNET_TOOL
    assert intent.query == "钠电池"


def test_unquoted_tool_key_in_broken_payload():
    intent = classify(buffer_of(text_chunks("{tool: search, 'query': 电池")), "电池技术")
    assert intent.source is IntentSource.KEYWORD
    assert intent.query == "电池技术"
