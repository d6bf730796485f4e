"""Emergency SMS through Twilio."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from ..config import settings

log = logging.getLogger(__name__)

_client: Client | None = None


def get_twilio_client() -> Client | None:
    """Build the Twilio client on first use; None until credentials are configured."""
    global _client

    if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN):
        log.warning("[SMS] Twilio credentials not configured")
        return None
    if _client is None:
        _client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
    return _client


def format_phone_for_twilio(phone: str) -> str:
    """
    Normalize a stored phone number to E.164.

    A leading '+' means the country code is already there. Bare ten digit
    numbers are North American and get a '1' prefix.
    """
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not phone.strip().startswith("+") and len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def sender_params() -> dict[str, str] | None:
    # A messaging service picks its own sender, so it wins over a fixed number
    if settings.TWILIO_MESSAGING_SERVICE_SID:
        return {"messaging_service_sid": settings.TWILIO_MESSAGING_SERVICE_SID}
    if settings.TWILIO_FROM_NUMBER:
        return {"from_": settings.TWILIO_FROM_NUMBER}
    return None


async def send_twilio_sms(to_number: str, message: str) -> bool:
    """Send one SMS. Returns False instead of raising when Twilio refuses it."""
    client = get_twilio_client()
    if client is None:
        return False

    sender = sender_params()
    if sender is None:
        log.error("[SMS] Neither TWILIO_MESSAGING_SERVICE_SID nor TWILIO_FROM_NUMBER configured")
        return False

    to_number = format_phone_for_twilio(to_number)
    params: dict[str, Any] = {**sender, "to": to_number, "body": message}

    try:
        # The Twilio client is blocking
        sent = await asyncio.to_thread(client.messages.create, **params)
    except TwilioException as e:
        log.error(f"[SMS] Twilio rejected message to {to_number}: {e}")
        return False
    except Exception as e:
        log.error(f"[SMS] Unexpected error sending to {to_number}: {e}")
        return False

    log.info(f"[SMS] Sent to {to_number}, SID: {sent.sid}")
    return True
