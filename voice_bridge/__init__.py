"""
Voice bridge - Twilio <-> text-completion phone conversations.
"""
from .completion_service import CompletionClient, converse
from .sessions import (
    InMemorySessionStore,
    Session,
    SessionBackend,
    StateCodec,
    TokenSessionBackend,
    trim_messages,
)
from .speech import create_tts_url, sanitize_for_tts
from .twiml import build_conversation_twiml, build_error_twiml

__all__ = [
    "CompletionClient",
    "converse",
    "InMemorySessionStore",
    "Session",
    "SessionBackend",
    "StateCodec",
    "TokenSessionBackend",
    "trim_messages",
    "create_tts_url",
    "sanitize_for_tts",
    "build_conversation_twiml",
    "build_error_twiml",
]
