"""
Call session state and the two ways of keeping it between webhooks.

- InMemorySessionStore: sessions live in this process, keyed by UUID.
  Twilio callbacks carry ?sessionId=<uuid>.
- TokenSessionBackend: nothing is kept server-side. The whole session is
  encoded into ?state=<token> on every callback URL (serverless hosting).

Both implement SessionBackend so the webhook handlers never care which one
is active.

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import base64
import binascii
import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import (
    DEFAULT_MAX_HISTORY_PAIRS,
    DEFAULT_VOICE,
    SESSION_MODE_TOKEN,
    Settings,
)

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are Unity Voice, an AI assistant speaking with a caller over the phone. "
    "Keep every reply under 200 characters, speak naturally, and ask follow-up "
    "questions to keep the chat going."
)

DEFAULT_GATHER_PROMPT = (
    "After the message, speak your reply and stay on the line for the assistant to respond."
)


@dataclass
class Session:
    """Conversation state for one phone call."""
    id: str
    phone_number: str
    voice: str = DEFAULT_VOICE
    messages: List[Dict[str, str]] = field(default_factory=list)
    last_assistant: str = ""
    gather_prompt: str = DEFAULT_GATHER_PROMPT

    def copy(self) -> "Session":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phoneNumber": self.phone_number,
            "voice": self.voice,
            "messages": [dict(m) for m in self.messages],
            "lastAssistant": self.last_assistant,
            "gatherPrompt": self.gather_prompt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Rebuild a session from its dict form.

        A missing or non-list "messages" becomes an empty history, and
        malformed entries are dropped.
        """
        raw_messages = data.get("messages")
        if not isinstance(raw_messages, list):
            raw_messages = []

        messages: List[Dict[str, str]] = []
        for msg in raw_messages:
            if not isinstance(msg, dict):
                continue
            role = msg.get("role")
            content = msg.get("content")
            if isinstance(role, str) and isinstance(content, str):
                messages.append({"role": role, "content": content})

        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            phone_number=str(data.get("phoneNumber") or ""),
            voice=data.get("voice") or DEFAULT_VOICE,
            messages=messages,
            last_assistant=data.get("lastAssistant") or "",
            gather_prompt=data.get("gatherPrompt") or DEFAULT_GATHER_PROMPT,
        )


def new_session(phone_number: str, voice: Optional[str] = None) -> Session:
    """Create a session seeded with the system prompt."""
    return Session(
        id=str(uuid.uuid4()),
        phone_number=phone_number,
        voice=voice or DEFAULT_VOICE,
        messages=[{"role": "system", "content": SYSTEM_PROMPT}],
    )


def trim_messages(
    messages: List[Dict[str, str]],
    max_pairs: int = DEFAULT_MAX_HISTORY_PAIRS,
) -> List[Dict[str, str]]:
    """Keep the first system message plus the last max_pairs user/assistant pairs."""
    if not isinstance(messages, list):
        return []

    system_messages = [m for m in messages if m.get("role") == "system"]
    others = [m for m in messages if m.get("role") != "system"]
    limit = max(max_pairs, 0) * 2
    recent = others[-limit:] if limit else []

    if system_messages:
        return [system_messages[0]] + recent
    return recent


# ============================================================
# Backends
# ============================================================

class SessionBackend(ABC):
    """Where sessions live between Twilio callbacks."""

    #: Query parameter that carries the session reference on callback URLs
    reference_param: str = "sessionId"

    def __init__(self, default_voice: str = DEFAULT_VOICE):
        self.default_voice = default_voice

    def create(self, phone_number: str, voice: Optional[str] = None) -> Session:
        """Create a fresh session for an outbound call."""
        return new_session(phone_number, voice or self.default_voice)

    @abstractmethod
    def get(self, reference: Optional[str]) -> Optional[Session]:
        """Resolve a callback reference. None means missing, expired or undecodable."""

    @abstractmethod
    def put(self, session: Session) -> str:
        """Persist a session and return the reference for callback URLs."""

    @abstractmethod
    def reference_for(self, session: Session) -> str:
        """Reference for callback URLs, without persisting anything."""

    def delete(self, session: Session) -> None:
        """Forget a session. Backends with no server-side state have nothing to do."""


class InMemorySessionStore(SessionBackend):
    """Process-local session registry.

    create() only builds the session; it is registered on the first put(), so
    a start that fails before put() leaves nothing behind. get() hands out a
    private copy and put() replaces the stored entry, so two callbacks racing
    on one session resolve last-writer-wins.
    """

    reference_param = "sessionId"

    def __init__(self, default_voice: str = DEFAULT_VOICE):
        super().__init__(default_voice)
        self._sessions: Dict[str, Session] = {}

    def get(self, reference: Optional[str]) -> Optional[Session]:
        if not reference:
            return None
        stored = self._sessions.get(reference)
        return stored.copy() if stored is not None else None

    def put(self, session: Session) -> str:
        if session.id not in self._sessions:
            logger.debug(f"Session {session.id} registered ({len(self._sessions) + 1} active)")
        self._sessions[session.id] = session.copy()
        return session.id

    def reference_for(self, session: Session) -> str:
        return session.id

    def delete(self, session: Session) -> None:
        self._sessions.pop(session.id, None)

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


class StateCodec:
    """Reversible session <-> URL-safe token encoding."""

    def __init__(self, max_history_pairs: int = DEFAULT_MAX_HISTORY_PAIRS):
        self.max_history_pairs = max_history_pairs

    def encode(self, session: Session) -> str:
        clone = session.copy()
        clone.messages = trim_messages(clone.messages, self.max_history_pairs)
        payload = json.dumps(clone.to_dict(), separators=(",", ":"), ensure_ascii=False)
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")

    def decode(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        try:
            padded = token + "=" * (-len(token) % 4)
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError("session state is not an object")
            return Session.from_dict(data)
        except (binascii.Error, ValueError, TypeError) as e:
            logger.warning(f"Failed to decode session state: {type(e).__name__}: {e}")
            return None


class TokenSessionBackend(SessionBackend):
    """Stateless backend: the token is the session."""

    reference_param = "state"

    def __init__(
        self,
        default_voice: str = DEFAULT_VOICE,
        max_history_pairs: int = DEFAULT_MAX_HISTORY_PAIRS,
    ):
        super().__init__(default_voice)
        self.codec = StateCodec(max_history_pairs)

    def get(self, reference: Optional[str]) -> Optional[Session]:
        return self.codec.decode(reference)

    def put(self, session: Session) -> str:
        return self.codec.encode(session)

    def reference_for(self, session: Session) -> str:
        return self.codec.encode(session)


def build_session_backend(settings: Settings) -> SessionBackend:
    """Pick the backend for the configured SESSION_MODE."""
    if settings.session_mode == SESSION_MODE_TOKEN:
        return TokenSessionBackend(settings.default_voice, settings.max_history_pairs)
    return InMemorySessionStore(settings.default_voice)
