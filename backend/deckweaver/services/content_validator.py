"""Junk-page filter for fetched web content."""

from __future__ import annotations

from deckweaver.config import get_settings

# Bot-block / error-page signatures (case-sensitive substring match)
BLOCKED_SIGNATURES: tuple[str, ...] = (
    "Just a moment...",
    "Attention Required! | Cloudflare",
    "Checking your browser before accessing",
    "Verify you are human",
    "Please enable JavaScript",
    "Enable JavaScript and cookies to continue",
    "Access Denied",
    "403 Forbidden",
    "404 Not Found",
    "502 Bad Gateway",
    "503 Service Unavailable",
    "Too Many Requests",
    "unusual traffic from your computer network",
    "安全验证",
    "访问被拒绝",
    "请完成下方验证",
)


def is_valid(body: str | None, *, min_length: int | None = None) -> bool:
    """Return False for bodies that are too short or look like a block page."""
    if not body:
        return False
    threshold = get_settings().MIN_CONTENT_LENGTH if min_length is None else min_length
    if len(body) < threshold:
        return False
    return not any(signature in body for signature in BLOCKED_SIGNATURES)
