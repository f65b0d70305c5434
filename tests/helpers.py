"""Test doubles and TwiML helpers shared by the test modules."""

import xml.etree.ElementTree as ET
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse

TEST_BASE_URL = "https://bridge.example.com"


class FakeCompletionClient:
    """Stands in for CompletionClient; replies from a script."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.replies = list(replies or ["Hi there"])
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        self.calls.append([dict(m) for m in messages])
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def close(self):
        pass


class FakeTwilioService:
    """Stands in for TwilioService; records originated calls."""

    def __init__(self, call_sid: str = "CA0000000000000000000000000000test", error: Optional[Exception] = None):
        self.call_sid = call_sid
        self.error = error
        self.calls: List[Dict[str, str]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def start_call(self, phone_e164: str, voice_url: str) -> str:
        if self.error is not None:
            raise self.error
        self.calls.append({"to": phone_e164, "url": voice_url})
        return self.call_sid


def parse_twiml(text: str) -> ET.Element:
    """Parse a TwiML document, failing the test if it is not well-formed."""
    root = ET.fromstring(text.encode("utf-8"))
    assert root.tag == "Response"
    return root


def query_param(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlparse(url).query).get(name)
    return values[0] if values else None
