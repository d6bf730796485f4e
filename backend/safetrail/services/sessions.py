"""
Safety session lifecycle.

A session goes INACTIVE -> ACTIVE -> ENDED and never comes back; starting a
new safety period always creates a new session. At most one session is active
at a time.

Every fix goes to the route tracker. While a session is active the fix is also
persisted as a location record, latches the session's start location the first
time, and is checked against the destination. Fixes that arrive with no active
session are dropped.

The location provider is shared by two consumers, the safety session and
independently started route tracking. It runs while either one needs it.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from ..config import get_settings
from ..models import (
    Destination,
    Fix,
    LocationRecord,
    LocationSnapshot,
    PermissionState,
    SafetySession,
    utcnow,
)
from .arrival import ArrivalDetector
from .background import PersistenceQueue
from .errors import PermissionDenied, PermissionPending, PersistenceFailure, SessionAlreadyActive
from .geo import format_coordinates, map_link
from .location import LocationProvider
from .notifications import Notifier, format_datetime_with_tz
from .route_tracker import RouteTracker
from .store import Store

settings = get_settings()
log = logging.getLogger(__name__)

SESSION_CONSUMER = "session"
ROUTE_CONSUMER = "route"


class SessionManager:
    def __init__(
        self,
        store: Store,
        provider: LocationProvider,
        notifier: Notifier,
        tracker: RouteTracker | None = None,
        detector: ArrivalDetector | None = None,
        persistence: PersistenceQueue | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.provider = provider
        self.notifier = notifier
        self.clock = clock
        self.tracker = tracker or RouteTracker(clock=clock)
        self.detector = detector or ArrivalDetector(notifier)
        self.persistence = persistence or PersistenceQueue()
        self._lifecycle_lock = asyncio.Lock()

        self.session: SafetySession | None = None
        self.last_fix: Fix | None = None
        self._consumers: set[str] = set()
        # True when the route tracker was started on behalf of the session
        self._session_owns_route = False

    # ------------------------------------------------------------------
    # Provider sharing
    # ------------------------------------------------------------------

    def _acquire_provider(self, consumer: str) -> None:
        if not self._consumers:
            self.provider.start()
        self._consumers.add(consumer)

    def _release_provider(self, consumer: str) -> None:
        self._consumers.discard(consumer)
        if not self._consumers:
            self.provider.stop()

    @property
    def provider_consumers(self) -> frozenset[str]:
        return frozenset(self._consumers)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def current_session(self) -> SafetySession | None:
        return self.session if self.session is not None and self.session.is_active else None

    def resume(self) -> SafetySession | None:
        """Reload an active session left in the store, e.g. after a restart."""
        session = self.store.get_active_session()
        if session is None:
            return None
        self.session = session
        if session.destination_lat is not None and session.destination_lon is not None:
            destination = self.detector.set_destination(
                session.destination_lat, session.destination_lon, session.destination_name
            )
            if session.arrived_at is not None:
                destination.has_arrived = True
                destination.arrived_at = session.arrived_at
        if not self.tracker.is_tracking:
            self.tracker.start_tracking()
            self._session_owns_route = True
        self._acquire_provider(SESSION_CONSUMER)
        log.info(f"[Sessions] Resumed active session {session.id}")
        return session

    def _prepare_start(self, destination: Destination | None) -> SafetySession:
        """Check that a session may start and build it, without touching any state."""
        if self.current_session is not None:
            raise SessionAlreadyActive(self.current_session.id)
        stored = self.store.get_active_session()
        if stored is not None:
            raise SessionAlreadyActive(stored.id)

        status = self.provider.authorization_status
        log.info(f"[Sessions] Starting safety mode, location auth: {status.value}")
        if status in (PermissionState.DENIED, PermissionState.RESTRICTED):
            raise PermissionDenied(f"Location permission is {status.value}")
        if status == PermissionState.UNDETERMINED:
            self.provider.request_permission()
            raise PermissionPending("Location permission requested, retry once it is granted")

        session = SafetySession(start_time=self.clock())
        session.attach_destination(destination if destination is not None else self.detector.destination)
        return session

    def _commit_start(self, session: SafetySession, destination: Destination | None) -> None:
        if destination is not None:
            self.detector.set_destination(destination.latitude, destination.longitude, destination.name)
        self.session = session

        if not self.tracker.is_tracking:
            self.tracker.start_tracking()
            self._session_owns_route = True
        self._acquire_provider(SESSION_CONSUMER)

        log.info(f"[Sessions] Safety session {session.id} started")

    def start(self, destination: Destination | None = None) -> SafetySession:
        """
        Start safety mode.

        A `destination` replaces the current one, but only once the session is
        stored. A refused start leaves the destination and its arrival alone.
        """
        session = self._prepare_start(destination)
        self.persistence.call(self.store.create_session, session, what="create session")
        self._commit_start(session, destination)
        return session

    async def start_async(self, destination: Destination | None = None) -> SafetySession:
        """`start` for callers on the event loop; the store write runs off the loop."""
        async with self._lifecycle_lock:
            session = self._prepare_start(destination)
            await self.persistence.acall(self.store.create_session, session, what="create session")
            self._commit_start(session, destination)
            return session

    def _prepare_end(self) -> tuple[SafetySession, SafetySession] | None:
        session = self.current_session
        if session is None:
            log.debug("[Sessions] End requested with no active session")
            return None

        ended = session.model_copy(deep=True)
        ended.is_active = False
        ended.end_time = self.clock()
        if self.last_fix is not None:
            ended.end_location = LocationSnapshot.from_fix(self.last_fix)
        # Drop fixes delivered while the end is written; restored if the write fails
        self.session = None
        return session, ended

    def _commit_end(self, session: SafetySession, ended: SafetySession) -> None:
        session.is_active = ended.is_active
        session.end_time = ended.end_time
        session.end_location = ended.end_location

        if self._session_owns_route:
            self.tracker.stop_tracking()
            self._session_owns_route = False
        self._release_provider(SESSION_CONSUMER)
        log.info(f"[Sessions] Safety session {session.id} ended")

    def end(self) -> SafetySession | None:
        """
        End the active session. Does nothing when no session is active.

        The ended session is stored before anything is released, so when the
        write fails the session is still active and `end` can be retried.
        """
        pending = self._prepare_end()
        if pending is None:
            return None
        session, ended = pending
        try:
            self.persistence.call(self.store.update_session, ended, what="end session")
        except PersistenceFailure:
            self.session = session
            raise
        self._commit_end(session, ended)
        return session

    async def end_async(self) -> SafetySession | None:
        """`end` for callers on the event loop."""
        async with self._lifecycle_lock:
            pending = self._prepare_end()
            if pending is None:
                return None
            session, ended = pending
            try:
                await self.persistence.acall(self.store.update_session, ended, what="end session")
            except PersistenceFailure:
                self.session = session
                raise
            self._commit_end(session, ended)
            return session

    # ------------------------------------------------------------------
    # Fix ingestion
    # ------------------------------------------------------------------

    def on_fix(self, fix: Fix) -> None:
        self.last_fix = fix
        self.tracker.add_location(fix)

        session = self.current_session
        if session is None:
            return

        self.persistence.submit(
            self.store.append_location,
            LocationRecord.from_fix(fix, session.id),
            what="append location",
        )

        changed = False
        if session.start_location is None:
            session.start_location = LocationSnapshot.from_fix(fix)
            changed = True

        if self.detector.check_arrival(fix):
            session.arrived_at = fix.timestamp
            changed = True

        if changed:
            self.persistence.submit(
                self.store.update_session, session.model_copy(deep=True), what="update session"
            )

    async def run(self, provider: LocationProvider | None = None) -> None:
        """Consume the provider's fix stream until cancelled."""
        source = provider or self.provider
        log.info("[Sessions] Fix consumer running")
        async for fix in source.fixes():
            try:
                self.on_fix(fix)
            except Exception as e:
                log.exception(f"[Sessions] Failed to handle fix at {fix.timestamp}: {e}")

    def shutdown(self) -> None:
        self.persistence.drain()
        self.persistence.close()

    # ------------------------------------------------------------------
    # Route tracking controls
    # ------------------------------------------------------------------

    def start_route_tracking(self) -> None:
        self.tracker.start_tracking()
        self._session_owns_route = False
        self._acquire_provider(ROUTE_CONSUMER)

    def stop_route_tracking(self) -> None:
        self.tracker.stop_tracking()
        self._session_owns_route = False
        self._release_provider(ROUTE_CONSUMER)

    def clear_route(self) -> None:
        self.tracker.clear()

    # ------------------------------------------------------------------
    # Destination
    # ------------------------------------------------------------------

    def set_destination(self, latitude: float, longitude: float, name: str | None = None) -> Destination:
        destination = self.detector.set_destination(latitude, longitude, name)
        self._sync_destination()
        return destination

    def clear_destination(self) -> None:
        self.detector.clear_destination()
        self._sync_destination()

    def _sync_destination(self) -> None:
        session = self.current_session
        if session is None:
            return
        session.attach_destination(self.detector.destination)
        self.persistence.submit(
            self.store.update_session, session.model_copy(deep=True), what="update destination"
        )

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    def share_link(self, session: SafetySession) -> str:
        return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/t/{session.share_token}"

    def current_map_link(self) -> str | None:
        if self.last_fix is None:
            return None
        return map_link(self.last_fix.latitude, self.last_fix.longitude)

    def share_message(self, session: SafetySession, fix: Fix | None = None) -> str:
        fix = fix or self.last_fix
        started, _ = format_datetime_with_tz(session.start_time, settings.TIMEZONE)
        lines = ["🛡️ I'm travelling with SafeTrail", "", f"Started: {started}"]
        if fix is not None:
            lines.append(f"Current location: {format_coordinates(fix.latitude, fix.longitude, places=4)}")
            lines.append(f"Map: {map_link(fix.latitude, fix.longitude)}")
        lines.extend(["", "Follow my live location here:", self.share_link(session)])
        return "\n".join(lines)
