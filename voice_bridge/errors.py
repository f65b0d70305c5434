"""Exception types raised across the voice bridge."""

from typing import Optional


class VoiceBridgeError(Exception):
    """Base class for all voice bridge errors."""


class ConfigurationError(VoiceBridgeError):
    """Required configuration (credentials, URLs) is missing."""


class ValidationError(VoiceBridgeError):
    """A first-party request carried malformed input."""


class UpstreamError(VoiceBridgeError):
    """The completion API or Twilio failed or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(VoiceBridgeError):
    """A webhook referenced a session that is missing, expired or undecodable."""
