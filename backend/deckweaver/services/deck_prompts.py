from __future__ import annotations
"""Prompts for the deck pipeline and the chat assistant.

Style presets under prompts/templates/<style>/ override these defaults.
"""

import logging

from deckweaver.config import get_settings
from deckweaver.prompts.manager import PromptManager
from deckweaver.schemas.deck import Page

logger = logging.getLogger(__name__)
settings = get_settings()

OUTLINE_SYSTEM_PROMPT = """你是一位资深的行业研究报告策划。请根据用户提供的主题与参考资料，规划一份结构清晰的报告大纲。

严格按以下 JSON 格式输出，不要输出任何其他文字：
{
  "title": "报告标题",
  "pages": [
    {"title": "页面标题", "content": "本页要点概述（1-2 句话）"}
  ]
}

要求：
1. 页面数量 5-12 页，逻辑递进（背景 → 现状 → 分析 → 结论）
2. 每页标题简洁有力，不超过 15 个字
3. 如用户提出修改意见，在原大纲基础上调整并输出完整的新大纲"""

PAGE_CONTENT_SYSTEM_PROMPT = """你是一位专业的研究报告撰稿人。请为报告中的一页撰写正文内容。

严格按以下 JSON 格式输出：
{"content": "Markdown 格式的页面正文"}

要求：
1. 内容紧扣本页标题与概述，信息密度高
2. 使用小标题、列表、加粗等 Markdown 结构
3. 篇幅控制在 150-400 字，适合单页幻灯片展示"""

PAGE_HTML_SYSTEM_PROMPT = """你是一位顶级的演示文稿视觉设计师。请把给定的页面内容设计成一页 16:9 的 HTML 幻灯片。

要求：
1. 输出完整的 HTML 文档（<!DOCTYPE html> 开头），使用 Tailwind CSS CDN
2. 版式美观、层次分明，可使用卡片、图标、数据高亮
3. 只输出一个 ```html 代码块，不要输出解释"""

CHAT_SYSTEM_PROMPT = """你是一名专业的情报分析助手。回答用户问题时：
1. 如果问题需要事实、数据或最新动态，请调用检索工具（search_knowledge_base 或 search_internet）
2. 如果可以直接回答，请直接用 Markdown 作答
3. 引用检索结果时使用 [1], [2] 标注来源"""

_DEFAULTS = {
    "outline": OUTLINE_SYSTEM_PROMPT,
    "page_content": PAGE_CONTENT_SYSTEM_PROMPT,
    "page_html": PAGE_HTML_SYSTEM_PROMPT,
    "chat_system": CHAT_SYSTEM_PROMPT,
}


def system_prompt(name: str, style: str | None = None) -> str:
    """Style template if present, else the built-in default."""
    return PromptManager.get_prompt(name, style or settings.PROMPT_STYLE) or _DEFAULTS[name]


def topic_prompt(topic: str, reference_materials: str = "") -> str:
    text = f"报告主题：{topic.strip()}"
    if reference_materials.strip():
        text += f"\n\n参考资料：\n{reference_materials.strip()}"
    return text


def page_content_prompt(topic: str, index: int, page: Page) -> str:
    return (
        f"报告主题：{topic}\n"
        f"第 {index + 1} 页：{page.title}\n"
        f"本页概述：{page.summary}"
    )


def page_html_prompt(topic: str, page: Page) -> str:
    return f"主题: {topic}\n页面标题: {page.title}\n内容:\n{page.content}"
