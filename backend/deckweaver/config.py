from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """DeckWeaver application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "DeckWeaver"
    DEBUG: bool = True
    USE_MOCK_API: bool = True

    # --- OpenRouter (streaming chat completions) ---
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_API_KEYS: str = ""  # comma-separated pool, takes precedence
    DECK_MODEL: str = "google/gemini-3-flash-preview"
    CHAT_MODEL: str = "nex-agi/deepseek-v3.1-nex-n1:free"
    LLM_TIMEOUT: int = 180

    # --- Prompt templates ---
    PROMPT_STYLE: str = "default"

    # --- Retrieval: content extraction (Jina reader) ---
    JINA_READER_BASE: str = "https://r.jina.ai"
    JINA_API_KEY: str = ""
    WEB_SEARCH_URL: str = "https://www.google.com/search?q={query}"
    READER_TIMEOUT: int = 30

    # --- Retrieval: internal semantic search ---
    KB_SEARCH_URL: str = "http://localhost:7657/api/intelligence/search/segments"
    KB_TOP_N: int = 5
    KB_SIMILARITY_THRESHOLD: float = 0.25

    # --- Retrieval: fan-out and trimming ---
    RETRIEVAL_MAX_URLS: int = 5
    RETRIEVAL_CONCURRENCY: int = 6
    RETRIEVAL_BODY_CHARS: int = 2000
    RETRIEVAL_SNIPPET_CHARS: int = 200

    # --- Content validation ---
    MIN_CONTENT_LENGTH: int = 200

    @property
    def CHAT_COMPLETIONS_URL(self) -> str:
        return f"{self.OPENROUTER_BASE_URL}/chat/completions"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
