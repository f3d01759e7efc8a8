from __future__ import annotations
"""Prompt style presets: text templates that override the built-in prompts."""

import logging
from pathlib import Path
from typing import ClassVar

logger = logging.getLogger(__name__)

_TEMPLATES_DIR = Path(__file__).parent / "templates"


class PromptManager:
    """Read prompt overrides from prompts/templates/{style}/{name}.txt.

    A style only needs to ship the prompts it changes. A missing file yields
    "" and the caller falls back to its own default.
    """

    _cache: ClassVar[dict[tuple[str, str], str]] = {}

    @classmethod
    def get_prompt(cls, template_name: str, style: str = "default") -> str:
        key = (style, template_name)
        if key not in cls._cache:
            path = _TEMPLATES_DIR / style / f"{template_name}.txt"
            if path.is_file():
                cls._cache[key] = path.read_text(encoding="utf-8").strip()
            else:
                if style != "default":
                    logger.debug("No %s override in style %s", template_name, style)
                cls._cache[key] = ""
        return cls._cache[key]

    @classmethod
    def reload(cls) -> None:
        cls._cache.clear()
        logger.info("Prompt template cache cleared.")

    @classmethod
    def list_styles(cls) -> list[str]:
        """Available presets; "default" is always present (built-in prompts)."""
        styles = {"default"}
        if _TEMPLATES_DIR.is_dir():
            styles.update(d.name for d in _TEMPLATES_DIR.iterdir() if d.is_dir())
        return sorted(styles)

    @classmethod
    def list_templates(cls, style: str) -> list[str]:
        style_dir = _TEMPLATES_DIR / style
        if not style_dir.is_dir():
            return []
        return sorted(f.stem for f in style_dir.glob("*.txt"))
