"""
Runtime configuration for the voice bridge.

Settings come from environment variables, optionally loaded from a .env file
(backend root first, then the current working directory).

Python 3.9 compatible - uses typing.List, typing.Optional
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SESSION_MODE_MEMORY = "memory"
SESSION_MODE_TOKEN = "token"
SESSION_MODES = (SESSION_MODE_MEMORY, SESSION_MODE_TOKEN)

DEFAULT_COMPLETION_URL = "https://text.pollinations.ai/openai"
DEFAULT_TEXT_MODEL = "openai"
DEFAULT_TTS_BASE_URL = "https://text.pollinations.ai/"
DEFAULT_TTS_MODEL = "openai-audio"
DEFAULT_VOICE = "nova"

# Observed defaults; both are tunable through the environment.
DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.1
DEFAULT_MAX_HISTORY_PAIRS = 6

DEFAULT_UPSTREAM_TIMEOUT_SECONDS = 20.0


def load_environment() -> None:
    """Load a .env file if one exists."""
    env_paths = [
        Path(__file__).parent.parent / ".env",
        Path.cwd() / ".env",
    ]
    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break
    else:
        load_dotenv()


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _get_positive_int(name: str, default: int) -> int:
    value = _get_int(name, default)
    if value < 1:
        logger.warning(f"Ignoring {name}={value}, must be at least 1, using {default}")
        return default
    return value


def _get_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Settings:
    """Resolved service settings."""

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    public_server_url: Optional[str] = None

    session_mode: str = SESSION_MODE_MEMORY

    completion_url: str = DEFAULT_COMPLETION_URL
    completion_model: str = DEFAULT_TEXT_MODEL
    completion_token: Optional[str] = None

    tts_base_url: str = DEFAULT_TTS_BASE_URL
    tts_model: str = DEFAULT_TTS_MODEL
    default_voice: str = DEFAULT_VOICE

    low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD
    max_history_pairs: int = DEFAULT_MAX_HISTORY_PAIRS
    upstream_timeout_seconds: float = DEFAULT_UPSTREAM_TIMEOUT_SECONDS

    allowed_origin: str = "*"
    debug: bool = False
    port: int = 4000

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        session_mode = (os.getenv("SESSION_MODE") or SESSION_MODE_MEMORY).strip().lower()
        if session_mode not in SESSION_MODES:
            logger.warning(
                f"Unknown SESSION_MODE={session_mode!r}, falling back to {SESSION_MODE_MEMORY!r}"
            )
            session_mode = SESSION_MODE_MEMORY

        return cls(
            twilio_account_sid=_get_str("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=_get_str("TWILIO_AUTH_TOKEN"),
            twilio_phone_number=_get_str("TWILIO_PHONE_NUMBER"),
            public_server_url=_get_str("PUBLIC_SERVER_URL"),
            session_mode=session_mode,
            completion_url=_get_str("POLLINATIONS_API_URL") or DEFAULT_COMPLETION_URL,
            completion_model=_get_str("POLLINATIONS_TEXT_MODEL") or DEFAULT_TEXT_MODEL,
            completion_token=_get_str("POLLINATIONS_TOKEN"),
            tts_base_url=_get_str("POLLINATIONS_TTS_URL") or DEFAULT_TTS_BASE_URL,
            tts_model=_get_str("POLLINATIONS_TTS_MODEL") or DEFAULT_TTS_MODEL,
            default_voice=_get_str("POLLINATIONS_VOICE") or DEFAULT_VOICE,
            low_confidence_threshold=_get_float(
                "LOW_CONFIDENCE_THRESHOLD", DEFAULT_LOW_CONFIDENCE_THRESHOLD
            ),
            max_history_pairs=_get_positive_int("MAX_HISTORY_PAIRS", DEFAULT_MAX_HISTORY_PAIRS),
            upstream_timeout_seconds=_get_float(
                "UPSTREAM_TIMEOUT_SECONDS", DEFAULT_UPSTREAM_TIMEOUT_SECONDS
            ),
            allowed_origin=_get_str("ALLOWED_ORIGIN") or "*",
            debug=os.getenv("DEBUG", "false").lower() == "true",
            port=_get_int("PORT", 4000),
        )

    def missing_twilio_settings(self) -> List[str]:
        """Names of the Twilio variables that are not set."""
        missing: List[str] = []
        if not self.twilio_account_sid:
            missing.append("TWILIO_ACCOUNT_SID")
        if not self.twilio_auth_token:
            missing.append("TWILIO_AUTH_TOKEN")
        if not self.twilio_phone_number:
            missing.append("TWILIO_PHONE_NUMBER")
        return missing

    @property
    def twilio_configured(self) -> bool:
        return not self.missing_twilio_settings()


def mask_secret(value: Optional[str]) -> str:
    """Mask a secret showing only the last 4 chars."""
    if not value:
        return "(not set)"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"
