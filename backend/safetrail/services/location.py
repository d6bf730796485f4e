from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Protocol

from ..config import get_settings
from ..models import Fix, PermissionState

settings = get_settings()
log = logging.getLogger(__name__)


class LocationProvider(Protocol):
    authorization_status: PermissionState

    def request_permission(self) -> PermissionState: ...
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def fixes(self) -> AsyncIterator[Fix]: ...


class DeviceLocationFeed:
    """
    Location provider fed by the phone over the API.

    The phone reports its permission state and uploads fixes; the core reads
    them back as an async stream. Uploads never wait: when the buffer is full
    the oldest buffered fix is dropped.
    """

    def __init__(self, maxsize: int | None = None,
                 authorization_status: PermissionState = PermissionState.UNDETERMINED):
        self._queue: asyncio.Queue[Fix] = asyncio.Queue(maxsize=maxsize or settings.FIX_QUEUE_SIZE)
        self.authorization_status = authorization_status
        self.permission_requested = False
        self.is_updating = False
        self.dropped = 0

    def set_authorization(self, state: PermissionState) -> None:
        log.info(f"[Feed] Authorization changed to: {state.value}")
        self.authorization_status = state
        if state != PermissionState.UNDETERMINED:
            self.permission_requested = False

    def request_permission(self) -> PermissionState:
        # The phone shows the system prompt the next time it polls
        if self.authorization_status == PermissionState.UNDETERMINED:
            self.permission_requested = True
            log.info("[Feed] Requesting location permission from device")
        return self.authorization_status

    def start(self) -> None:
        if not self.is_updating:
            log.info("[Feed] Starting location updates")
        self.is_updating = True

    def stop(self) -> None:
        if self.is_updating:
            log.info("[Feed] Stopping location updates")
        self.is_updating = False

    def push(self, fix: Fix) -> bool:
        """Accept one fix from the device. Returns False when updates are stopped."""
        if not self.is_updating:
            log.debug("[Feed] Ignoring fix while location updates are stopped")
            return False
        try:
            self._queue.put_nowait(fix)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self.dropped += 1
            log.warning(f"[Feed] Fix buffer full, dropped oldest fix ({self.dropped} dropped so far)")
            self._queue.put_nowait(fix)
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def fixes(self) -> AsyncIterator[Fix]:
        while True:
            yield await self._queue.get()
