"""
Tests for TwiML rendering.

Both document shapes are parsed as XML so the tests check structure, not
serializer whitespace.
"""

from urllib.parse import parse_qs, urlparse

from tests.helpers import parse_twiml
from voice_bridge.sessions import DEFAULT_GATHER_PROMPT, new_session
from voice_bridge.twiml import (
    NO_MESSAGE_APOLOGY,
    NO_RESPONSE_MESSAGE,
    SESSION_INACTIVE_MESSAGE,
    build_conversation_twiml,
    build_error_twiml,
)

ACTION_URL = "https://bridge.example.com/twilio/gather?sessionId=abc&extra=1"


class TestConversationTwiml:

    def test_full_document_shape(self):
        session = new_session("+15555550123")
        session.last_assistant = "Hello caller, Unity online."

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL, "Please reply after the tone."))

        assert [child.tag for child in root] == ["Play", "Gather", "Say", "Hangup"]

        play, gather, say, _ = list(root)
        play_url = urlparse(play.text)
        assert play_url.netloc == "text.pollinations.ai"
        assert play_url.path == "/Hello%20caller%2C%20Unity%20online."
        assert parse_qs(play_url.query) == {"model": ["openai-audio"], "voice": ["nova"]}

        assert gather.attrib["input"] == "speech"
        assert gather.attrib["action"] == ACTION_URL
        assert gather.attrib["method"] == "POST"
        assert gather.attrib["speechTimeout"] == "auto"
        assert [child.tag for child in gather] == ["Say", "Pause"]
        assert gather[0].text == "Please reply after the tone."
        assert gather[1].attrib["length"] == "1"

        assert say.text == NO_RESPONSE_MESSAGE

    def test_action_url_is_escaped(self):
        session = new_session("+15555550123")
        session.last_assistant = "Hi"

        xml = build_conversation_twiml(session, ACTION_URL)

        assert "sessionId=abc&amp;extra=1" in xml

    def test_defaults_to_session_gather_prompt(self):
        session = new_session("+15555550123")
        session.last_assistant = "Hi"

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL))

        assert root.find("Gather/Say").text == DEFAULT_GATHER_PROMPT

    def test_uses_session_voice(self):
        session = new_session("+15555550123", "aria")
        session.last_assistant = "Hi"

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL))

        assert parse_qs(urlparse(root.find("Play").text).query)["voice"] == ["aria"]

    def test_fallback_utterance_when_no_assistant_text(self):
        session = new_session("+15555550123")

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL, fallback_utterance="Hold on"))

        assert root.find("Play").text.split("?")[0].endswith("/Hold%20on")

    def test_terminal_when_nothing_to_say(self):
        session = new_session("+15555550123")

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL, "ignored"))

        assert [child.tag for child in root] == ["Say", "Hangup"]
        assert root[0].text == NO_MESSAGE_APOLOGY

    def test_prompt_with_special_characters_is_well_formed(self):
        session = new_session("+15555550123")
        session.last_assistant = "Fish & <chips>?"

        root = parse_twiml(build_conversation_twiml(session, ACTION_URL, 'Say "yes" & <wait>'))

        assert root.find("Gather/Say").text == 'Say "yes" & <wait>'


class TestErrorTwiml:

    def test_says_message_and_hangs_up(self):
        root = parse_twiml(build_error_twiml("Session information was not provided."))

        assert [child.tag for child in root] == ["Say", "Hangup"]
        assert root[0].text == "Session information was not provided."

    def test_default_message(self):
        root = parse_twiml(build_error_twiml())
        assert root[0].text == SESSION_INACTIVE_MESSAGE

    def test_has_xml_declaration(self):
        assert build_error_twiml("bye").startswith('<?xml version="1.0" encoding="UTF-8"?>')
