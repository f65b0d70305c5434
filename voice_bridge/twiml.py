"""
TwiML rendering for the conversation loop.

Every document ends in a well-defined terminal outcome: either the caller
speaks and Twilio posts to the gather action, or the trailing Say/Hangup
runs after the listen timeout.
"""

from typing import Optional

from twilio.twiml.voice_response import VoiceResponse

from .config import DEFAULT_TTS_BASE_URL, DEFAULT_TTS_MODEL
from .sessions import DEFAULT_GATHER_PROMPT, Session
from .speech import create_tts_url

NO_RESPONSE_MESSAGE = "No response detected. Ending the call."
NO_MESSAGE_APOLOGY = "I was not able to prepare a message. Goodbye."
SESSION_INACTIVE_MESSAGE = "The session is no longer active. Goodbye."

GATHER_LANGUAGE = "en-US"


def build_conversation_twiml(
    session: Session,
    action_url: str,
    gather_prompt: Optional[str] = None,
    fallback_utterance: Optional[str] = None,
    tts_model: str = DEFAULT_TTS_MODEL,
    tts_base_url: str = DEFAULT_TTS_BASE_URL,
) -> str:
    """
    Render play + gather + no-response fallback for the session's utterance.

    Args:
        session: Session whose last_assistant is spoken
        action_url: Absolute gather callback, already carrying the session reference
        gather_prompt: Prompt spoken inside the Gather (defaults to the session's)
        fallback_utterance: Spoken when the session has no assistant text yet

    Returns:
        TwiML XML string
    """
    response = VoiceResponse()

    utterance = session.last_assistant or fallback_utterance
    if not utterance:
        response.say(NO_MESSAGE_APOLOGY)
        response.hangup()
        return str(response)

    response.play(
        create_tts_url(utterance, session.voice, model=tts_model, base_url=tts_base_url)
    )

    gather = response.gather(
        input="speech",
        action=action_url,
        method="POST",
        speech_timeout="auto",
        language=GATHER_LANGUAGE,
    )
    gather.say(gather_prompt or session.gather_prompt or DEFAULT_GATHER_PROMPT)
    gather.pause(length=1)

    response.say(NO_RESPONSE_MESSAGE)
    response.hangup()
    return str(response)


def build_error_twiml(message: Optional[str] = None) -> str:
    """Terminal document: say the message, then hang up."""
    response = VoiceResponse()
    response.say(message or SESSION_INACTIVE_MESSAGE)
    response.hangup()
    return str(response)
