"""
Speech helpers: text sanitizing and speech-synthesis URLs.

The speech service renders audio straight from a GET URL, so assistant text
is compacted and capped before it goes into the path.
"""

import re
from typing import Optional
from urllib.parse import quote, urlencode

from .config import DEFAULT_TTS_BASE_URL, DEFAULT_TTS_MODEL, DEFAULT_VOICE

MAX_TTS_CHARS = 380
ELLIPSIS = "..."

_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_for_tts(text: Optional[str]) -> str:
    """Collapse whitespace and cap the text at MAX_TTS_CHARS."""
    if not text:
        return ""
    compact = _WHITESPACE_RE.sub(" ", str(text)).strip()
    if len(compact) <= MAX_TTS_CHARS:
        return compact
    return compact[: MAX_TTS_CHARS - len(ELLIPSIS)] + ELLIPSIS


def create_tts_url(
    text: Optional[str],
    voice: Optional[str] = None,
    model: Optional[str] = DEFAULT_TTS_MODEL,
    base_url: str = DEFAULT_TTS_BASE_URL,
) -> str:
    """Build the speech-audio URL for text.

    Args:
        text: Text to speak (sanitized here)
        voice: Voice preset, DEFAULT_VOICE when omitted
        model: Speech model, skipped when empty
        base_url: Speech service root

    Returns:
        Fully-qualified URL string
    """
    sanitized = sanitize_for_tts(text)
    encoded = quote(sanitized, safe="")

    params = {}
    if model:
        params["model"] = model
    params["voice"] = voice or DEFAULT_VOICE

    root = base_url if base_url.endswith("/") else f"{base_url}/"
    return f"{root}{encoded}?{urlencode(params)}"
