"""
Pydantic models for the voice bridge API and the completion API.
Python 3.9 compatible - uses typing.List, typing.Optional
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str  # "system", "user" or "assistant"
    content: str


# ============================================================
# Call start
# ============================================================

class CallStartRequest(BaseModel):
    """Body of POST /call/start.

    phoneNumber is optional at the schema level so a missing number is
    reported as a 400 with a readable message instead of a 422.
    """
    phoneNumber: Optional[str] = None
    initialPrompt: Optional[str] = None
    voice: Optional[str] = None


class CallStartResponse(BaseModel):
    status: str = "initiated"
    message: str
    callSid: Optional[str] = None
    sessionId: Optional[str] = None  # memory mode
    sessionToken: Optional[str] = None  # token mode
    gatherPrompt: str
    voice: str


class ErrorResponse(BaseModel):
    error: str


# ============================================================
# Completion API (OpenAI-compatible chat completions)
# ============================================================

class CompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    temperature: float = 0.8
    max_output_tokens: int = 300
    top_p: float = 0.95
    presence_penalty: float = 0
    frequency_penalty: float = 0
    stream: bool = False


class CompletionMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class CompletionChoice(BaseModel):
    index: Optional[int] = None
    message: Optional[CompletionMessage] = None
    finish_reason: Optional[str] = None


class CompletionResponse(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[CompletionChoice] = Field(default_factory=list)

    def first_content(self) -> str:
        """Trimmed content of the first choice, or "" when absent."""
        if not self.choices:
            return ""
        message = self.choices[0].message
        if message is None or not message.content:
            return ""
        return message.content.strip()
