"""
Completion Service - talks to the hosted text-completion API.

This service:
1. POSTs the (trimmed) conversation to an OpenAI-compatible chat endpoint
2. Extracts choices[0].message.content through a typed response model
3. Raises UpstreamError on any failure - callers never continue with a
   stale reply

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import logging
from typing import Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import (
    DEFAULT_COMPLETION_URL,
    DEFAULT_MAX_HISTORY_PAIRS,
    DEFAULT_TEXT_MODEL,
    DEFAULT_UPSTREAM_TIMEOUT_SECONDS,
    Settings,
)
from .errors import UpstreamError
from .models import ChatMessage, CompletionRequest, CompletionResponse
from .sessions import Session, trim_messages

logger = logging.getLogger(__name__)

# Maximum chars of an error body to keep in exceptions/logs
MAX_ERROR_BODY_CHARS = 500

GREETING_SEED_PROMPT = "Greet the caller briefly and ask how you can help."


class CompletionClient:
    """Async client for the chat completion endpoint."""

    def __init__(
        self,
        url: str = DEFAULT_COMPLETION_URL,
        model: str = DEFAULT_TEXT_MODEL,
        token: Optional[str] = None,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.model = model
        self.token = token
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"Completion client configured: url={self.url}, model={self.model}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        return cls(
            url=settings.completion_url,
            model=settings.completion_model,
            token=settings.completion_token,
            timeout=settings.upstream_timeout_seconds,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.http_client.aclose()

    def build_payload(self, messages: List[Dict[str, str]]) -> Dict:
        request = CompletionRequest(
            model=self.model,
            messages=[ChatMessage(**m) for m in messages],
        )
        return request.model_dump()

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Request the next assistant reply.

        Args:
            messages: Conversation history, system message first

        Returns:
            Non-empty, trimmed assistant text

        Raises:
            UpstreamError: transport failure, non-2xx, bad JSON or empty content
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        payload = self.build_payload(messages)
        logger.debug(f"Completion request: {len(messages)} messages")

        try:
            response = await self.http_client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Completion transport error: {type(e).__name__}: {e}")
            raise UpstreamError(f"Completion API request failed: {e}") from e

        if not response.is_success:
            body = response.text[:MAX_ERROR_BODY_CHARS]
            logger.error(f"Completion API error: {response.status_code} {body}")
            raise UpstreamError(
                f"Completion API error: {response.status_code} {body}",
                status_code=response.status_code,
            )

        try:
            parsed = CompletionResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error(f"Completion API returned an unreadable body: {e}")
            raise UpstreamError("Completion API returned an unreadable response.") from e

        content = parsed.first_content()
        if not content:
            raise UpstreamError("Completion API returned an empty response.")

        logger.info(f"Completion received: {content[:100]}")
        return content


async def converse(
    session: Session,
    utterance: Optional[str],
    client: CompletionClient,
    max_history_pairs: int = DEFAULT_MAX_HISTORY_PAIRS,
) -> str:
    """Run one turn: record the caller's words, fetch and record the reply.

    A blank utterance is not added to the history. Older turns are trimmed
    before the new utterance is appended, so it is always sent. On failure the
    exception propagates and last_assistant is left untouched.
    """
    session.messages = trim_messages(session.messages, max_history_pairs)

    text = utterance.strip() if isinstance(utterance, str) else ""
    if text:
        session.messages.append({"role": "user", "content": text})

    reply = await client.complete(session.messages)

    session.messages.append({"role": "assistant", "content": reply})
    session.messages = trim_messages(session.messages, max_history_pairs)
    session.last_assistant = reply
    return reply
