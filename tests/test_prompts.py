from deckweaver.prompts.manager import PromptManager
from deckweaver.services import deck_prompts


def test_default_style_uses_builtin_prompts():
    assert deck_prompts.system_prompt("outline", "default") == deck_prompts.OUTLINE_SYSTEM_PROMPT
    assert deck_prompts.system_prompt("page_content", "missing-style") == deck_prompts.PAGE_CONTENT_SYSTEM_PROMPT


def test_style_overrides_only_what_it_ships():
    assert "page_content" not in PromptManager.list_templates("briefing")
    assert deck_prompts.system_prompt("outline", "briefing") != deck_prompts.OUTLINE_SYSTEM_PROMPT
    assert deck_prompts.system_prompt("page_content", "briefing") == deck_prompts.PAGE_CONTENT_SYSTEM_PROMPT


def test_topic_prompt_includes_references():
    assert "参考资料" not in deck_prompts.topic_prompt("储能")
    assert "资料 A" in deck_prompts.topic_prompt("储能", "资料 A")


def test_reload_clears_cache():
    PromptManager.get_prompt("outline", "briefing")
    PromptManager.reload()
    assert PromptManager._cache == {}
