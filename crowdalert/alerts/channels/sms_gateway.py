"""
sms_gateway.py — Text-message delivery via a messaging provider.

Delivery mechanism:
    • Primary: Twilio Messages API (async client)
    • Payload: {body, from, to}; `to` must be E.164-like (+<cc><number>)
    • Default: simulation mode for development

═══════════════════════════════════════════════════════════════════════════
CONTACT NORMALISATION
═══════════════════════════════════════════════════════════════════════════

The directory stores contacts as users typed them. Before submission:

    "98765 43210"     → "+919876543210"   (no leading "+": default code)
    "+1 (415) 555-0100" → "+14155550100"  (separators dropped)
    "+919876543210"   → "+919876543210"

Only the leading "+" marks an existing country code; "0091..." style
prefixes are treated as plain digits.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Optional, Protocol

from twilio.base.exceptions import TwilioException
from twilio.http.async_http_client import AsyncTwilioHttpClient
from twilio.rest import Client

from crowdalert.core.config import settings
from crowdalert.core.errors import InvalidInputError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

SERVICE_NAME = "messaging"

_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_contact(contact: str, default_country_code: Optional[str] = None) -> str:
    """
    Canonical international form of a phone-like contact.

    Raises
    ------
    InvalidInputError
        Empty contact, or characters other than digits after cleanup.
    """
    code = default_country_code or settings.DEFAULT_COUNTRY_CODE
    if not code.startswith("+"):
        code = f"+{code}"

    cleaned = _SEPARATORS.sub("", contact or "")
    if not cleaned:
        raise InvalidInputError("Contact is empty", field="contact")

    if cleaned.startswith("+"):
        digits = cleaned[1:]
        prefix = "+"
    else:
        digits = cleaned
        prefix = code

    if not digits.isdigit():
        raise InvalidInputError(f"Contact {contact!r} is not a phone number", field="contact")

    return f"{prefix}{digits}"


class Messenger(Protocol):
    """Submits one text message; returns the provider's message id."""

    async def send(self, to: str, body: str) -> str:
        ...

    async def close(self) -> None:
        ...


class SimulationMessenger:
    """Logs instead of sending. Every submission succeeds."""

    def __init__(self, sender: str = "SIMULATION"):
        self.sender = sender

    async def send(self, to: str, body: str) -> str:
        sid = f"SIM{uuid.uuid4().hex[:16]}"
        logger.info(
            "[SMS] %s → %s: %d chars → '%s'",
            self.sender, to, len(body),
            body[:80] + ("..." if len(body) > 80 else ""),
        )
        return sid

    async def close(self) -> None:
        return None


class TwilioMessenger:
    """
    Twilio Messages API over the SDK's async HTTP client.

    Credentials are passed in; the instance owns its HTTP session and
    must be closed.
    """

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        if not (account_sid and auth_token and from_number):
            raise InvalidInputError("Twilio credentials are incomplete", field="twilio")
        self.from_number = from_number
        self._http = AsyncTwilioHttpClient()
        self._client = Client(account_sid, auth_token, http_client=self._http)

    async def send(self, to: str, body: str) -> str:
        try:
            message = await self._client.messages.create_async(
                body=body, from_=self.from_number, to=to,
            )
        except TwilioException as e:
            raise UpstreamUnavailableError(SERVICE_NAME, str(e), to=to) from e
        logger.info("[SMS/Twilio] Sent to %s: %s", to, message.sid)
        return message.sid

    async def close(self) -> None:
        await self._http.close()


def build_messenger(provider: Optional[str] = None) -> Messenger:
    """Messenger for the configured SMS_PROVIDER."""
    provider = (provider or settings.SMS_PROVIDER).lower()
    if provider == "simulation":
        return SimulationMessenger()
    if provider == "twilio":
        return TwilioMessenger(
            settings.TWILIO_ACCOUNT_SID or "",
            settings.TWILIO_AUTH_TOKEN or "",
            settings.TWILIO_PHONE_NUMBER or "",
        )
    raise InvalidInputError(f"Unknown SMS provider: {provider}", field="SMS_PROVIDER")
