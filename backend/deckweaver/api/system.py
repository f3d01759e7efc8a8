"""System endpoints: LLM key check and prompt style presets."""

from __future__ import annotations

from fastapi import APIRouter

from deckweaver.config import get_settings
from deckweaver.prompts.manager import PromptManager

router = APIRouter()
settings = get_settings()


@router.get("/check-llm")
async def check_llm():
    """Pre-check LLM API keys: verify which keys are valid before generation."""
    from deckweaver.services.llm_client import check_llm_health
    return await check_llm_health()


@router.get("/styles")
async def list_styles():
    """Prompt style presets and the templates each one overrides."""
    return {
        "active": settings.PROMPT_STYLE,
        "styles": [
            {"name": style, "templates": PromptManager.list_templates(style)}
            for style in PromptManager.list_styles()
        ],
    }


@router.post("/styles/reload")
async def reload_styles():
    PromptManager.reload()
    return {"status": "ok"}


@router.get("/settings")
async def get_settings_api():
    """Non-secret runtime configuration."""
    return {
        "use_mock_api": settings.USE_MOCK_API,
        "deck_model": settings.DECK_MODEL,
        "chat_model": settings.CHAT_MODEL,
        "prompt_style": settings.PROMPT_STYLE,
        "retrieval_max_urls": settings.RETRIEVAL_MAX_URLS,
        "retrieval_concurrency": settings.RETRIEVAL_CONCURRENCY,
        "kb_top_n": settings.KB_TOP_N,
    }
