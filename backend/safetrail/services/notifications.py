from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

import httpx
import pytz

from ..config import get_settings
from ..messaging.apns import PushResult, get_push_sender
from ..messaging.twilio_backend import send_twilio_sms
from ..models import EmergencyContact

if TYPE_CHECKING:
    from .background import PersistenceQueue
    from .store import Store

settings = get_settings()
log = logging.getLogger(__name__)

ARRIVAL_TITLE = "SafeTrail - Arrived safely"
ALERT_TITLE = "SafeTrail emergency alert"


def format_datetime_with_tz(dt: datetime | None, user_timezone: str | None) -> tuple[str, str]:
    """Convert datetime to user's timezone and format it.

    Returns: (formatted_string, timezone_display)
    """
    if dt is None:
        return "Not specified", ""

    timezone_display = ""
    if user_timezone:
        try:
            tz = pytz.timezone(user_timezone)
            if dt.tzinfo is None:
                dt = pytz.utc.localize(dt)
            dt = dt.astimezone(tz)
            timezone_display = f" {dt.strftime('%Z')}"
        except pytz.UnknownTimeZoneError as e:
            log.warning(f"Failed to convert to timezone {user_timezone}: {e}")

    return dt.strftime('%B %d, %Y at %I:%M %p') + timezone_display, timezone_display


async def deliver_with_retry(
    send: Callable[[], Awaitable[bool]],
    what: str,
    max_retries: int,
    retry_delays: list[float],
) -> bool:
    """Run a send coroutine factory until it reports success or attempts run out."""
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            if await send():
                return True
            error = "backend reported failure"
        except Exception as e:
            error = str(e)

        if attempt < attempts - 1:
            delay = retry_delays[min(attempt, len(retry_delays) - 1)] if retry_delays else 0
            log.warning(f"[Notify] {what} failed (attempt {attempt + 1}/{attempts}): {error}, retrying in {delay}s")
            await asyncio.sleep(delay)
        else:
            log.error(f"[Notify] {what} failed after {attempts} attempts: {error}")
    return False


class Notifier:
    """Outbound arrival pushes and emergency SMS, selected by the configured backends."""

    def __init__(
        self,
        store: Store | None = None,
        push_sender=None,
        device_tokens: list[str] | None = None,
        persistence: PersistenceQueue | None = None,
    ):
        self.store = store
        # Shared with the session manager so log rows queue behind its writes
        self.persistence = persistence
        self.push_sender = push_sender
        self.device_tokens = device_tokens if device_tokens is not None else settings.PUSH_DEVICE_TOKENS

    def _log(self, notification_type: str, recipient: str, title: str, body: str | None,
             status: str, error_message: str | None = None) -> None:
        if self.store is None:
            return
        args = (notification_type, recipient, title, body, status, error_message)
        if self.persistence is not None:
            self.persistence.submit(self.store.log_notification, *args, what="notification log")
            return
        try:
            self.store.log_notification(*args)
        except Exception as e:
            # Don't let logging failures break the notification flow
            log.error(f"Failed to log notification: {e}")

    async def notify_arrival(self, destination_name: str) -> bool:
        body = f"You have arrived safely at {destination_name}. Your trip is complete."

        if not self.device_tokens:
            log.info(f"[Notify] No devices registered for arrival push: {body}")
            return False

        if self.push_sender is None:
            self.push_sender = get_push_sender()

        delivered = False
        for token in self.device_tokens:
            try:
                result = await self.push_sender.send(token, ARRIVAL_TITLE, body, data={"type": "arrival"})
            except httpx.HTTPError as e:
                result = PushResult(ok=False, status=0, detail=str(e))

            if result.ok:
                delivered = True
                self._log("push", token, ARRIVAL_TITLE, body, "sent")
            else:
                log.warning(f"[Notify] Arrival push to {token[:8]}... failed: {result.status} {result.detail}")
                self._log("push", token, ARRIVAL_TITLE, body, "failed", f"{result.status}: {result.detail}")
        return delivered

    async def send_alert(self, contact: EmergencyContact, message: str) -> bool:
        if settings.SMS_BACKEND == "twilio":
            ok = await send_twilio_sms(contact.phone_number, message)
        elif settings.SMS_BACKEND == "dummy":
            log.info(f"[DUMMY SMS] To: {contact.name} <{contact.phone_number}>\n{message}")
            ok = True
        else:
            log.warning(f"Unknown SMS backend: {settings.SMS_BACKEND}")
            ok = False

        self._log(
            "sms",
            contact.phone_number,
            ALERT_TITLE,
            message,
            "sent" if ok else "failed",
            None if ok else f"{settings.SMS_BACKEND} backend reported failure",
        )
        return ok

    async def close(self) -> None:
        if self.push_sender is not None:
            await self.push_sender.close()
