"""
Twilio Service - places the outbound call.

This service:
1. Checks Twilio credentials before touching the network
2. Creates the call via the Twilio REST API, pointing its voice webhook at
   /twilio/voice with the session reference
3. Surfaces Twilio failures as UpstreamError

The Twilio SDK is synchronous; the web layer runs start_call in the
threadpool.

Python 3.9 compatible - uses typing.Optional
"""

import logging
import re
from typing import Optional

from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client as TwilioClient

from .config import DEFAULT_UPSTREAM_TIMEOUT_SECONDS, Settings
from .errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def validate_phone_e164(phone: Optional[str]) -> bool:
    """
    Validate E.164 phone format: starts with +, followed by digits only.
    Examples: +15555550123, +61731824583
    """
    if not phone:
        return False
    return bool(E164_PATTERN.match(phone))


class TwilioService:
    """Service for originating Twilio outbound calls."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        phone_number: Optional[str] = None,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT_SECONDS,
    ):
        """Store credentials.

        Does NOT crash if Twilio is not configured - start_call raises
        ConfigurationError instead, so the rest of the service keeps working.
        """
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.phone_number = phone_number
        self.timeout = timeout
        self._client: Optional[TwilioClient] = None

        if self.is_configured:
            logger.info(f"TwilioService configured with phone: {self.phone_number}")
        else:
            logger.warning("TwilioService: Twilio credentials not configured - calls will fail")

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioService":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            phone_number=settings.twilio_phone_number,
            timeout=settings.upstream_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Check if Twilio is properly configured."""
        return bool(self.account_sid and self.auth_token and self.phone_number)

    @property
    def client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(
                self.account_sid,
                self.auth_token,
                http_client=TwilioHttpClient(timeout=self.timeout),
            )
        return self._client

    def start_call(self, phone_e164: str, voice_url: str) -> str:
        """Start an outbound call via Twilio.

        Args:
            phone_e164: Destination in E.164 format
            voice_url: Absolute URL of the answer webhook for this session

        Returns:
            Twilio Call SID

        Raises:
            ConfigurationError: If Twilio credentials are missing
            UpstreamError: If the Twilio API call fails
        """
        if not self.is_configured:
            raise ConfigurationError("Twilio credentials are not fully configured.")

        logger.info(f"Starting Twilio call to {phone_e164}")

        try:
            call = self.client.calls.create(
                to=phone_e164,
                from_=self.phone_number,
                url=voice_url,
                method="POST",
            )
        except TwilioRestException as e:
            logger.error(f"Twilio API error: status={e.status}, code={e.code}, msg={e.msg}")
            raise UpstreamError(f"Twilio API error: {e.status} {e.msg}", status_code=e.status) from e
        except Exception as e:
            logger.error(f"Twilio request failed: {type(e).__name__}: {e}")
            raise UpstreamError(f"Twilio request failed: {e}") from e

        logger.info(f"Twilio call started: SID={call.sid}, status={call.status}")
        return call.sid
