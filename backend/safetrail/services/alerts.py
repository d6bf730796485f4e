"""Emergency alert composition and fan-out to enabled contacts."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable

from pydantic import BaseModel, Field

from ..config import get_settings
from ..models import EmergencyContact, Fix, utcnow
from .errors import DeliveryFailure, NoContactsConfigured
from .geo import format_coordinates, map_link
from .notifications import Notifier, deliver_with_retry, format_datetime_with_tz

settings = get_settings()
log = logging.getLogger(__name__)

EMERGENCY_PREAMBLE = "🚨 EMERGENCY - SafeTrail"
EMERGENCY_CLOSING = "Please contact me immediately or call emergency services."


class AlertReport(BaseModel):
    attempted: list[int] = Field(default_factory=list)
    delivered: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)


class AlertDispatcher:
    def __init__(
        self,
        notifier: Notifier,
        max_retries: int | None = None,
        retry_delays: list[float] | None = None,
        timezone: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.notifier = notifier
        self.max_retries = settings.ALERT_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delays = settings.ALERT_RETRY_DELAYS if retry_delays is None else retry_delays
        self.timezone = timezone or settings.TIMEZONE
        self.clock = clock

    def compose(self, fix: Fix | None, message: str | None = None) -> str:
        custom = message or settings.DEFAULT_EMERGENCY_MESSAGE
        sent_at, _ = format_datetime_with_tz(self.clock(), self.timezone)

        lines = [EMERGENCY_PREAMBLE, "", custom, "", f"Time: {sent_at}"]
        if fix is not None:
            lines.append(f"Location: {format_coordinates(fix.latitude, fix.longitude)}")
            lines.append(f"Map: {map_link(fix.latitude, fix.longitude)}")
        lines.extend(["", EMERGENCY_CLOSING])
        return "\n".join(lines)

    async def _deliver(self, contact: EmergencyContact, body: str) -> bool:
        ok = await deliver_with_retry(
            lambda: self.notifier.send_alert(contact, body),
            what=f"Alert to contact {contact.id}",
            max_retries=self.max_retries,
            retry_delays=self.retry_delays,
        )
        if not ok:
            failure = DeliveryFailure(contact.id, "all delivery attempts failed")
            log.error(f"[Alerts] {failure}")
        return ok

    async def trigger(
        self,
        contacts: Iterable[EmergencyContact],
        fix: Fix | None,
        message: str | None = None,
    ) -> AlertReport:
        """Send one alert per enabled contact. Never waits for a location fix."""
        enabled = [c for c in contacts if c.is_enabled]
        if not enabled:
            log.warning("[Alerts] No emergency contacts configured, alert not sent")
            raise NoContactsConfigured()

        body = self.compose(fix, message)
        report = AlertReport(attempted=[c.id for c in enabled])

        results = await asyncio.gather(
            *(self._deliver(contact, body) for contact in enabled),
            return_exceptions=True,
        )
        for contact, result in zip(enabled, results):
            if result is True:
                report.delivered.append(contact.id)
            else:
                if isinstance(result, BaseException):
                    log.error(f"[Alerts] {DeliveryFailure(contact.id, str(result))}")
                report.failed.append(contact.id)

        log.info(
            f"[Alerts] Emergency alert sent to {len(report.delivered)}/{len(enabled)} contacts"
            f"{' (no location available)' if fix is None else ''}"
        )
        return report
