"""Tests for the safety session lifecycle"""
import asyncio
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool

from safetrail import database as db
from safetrail.models import Destination, Fix, PermissionState, SessionState
from safetrail.services import sessions as sessions_module
from safetrail.services.errors import (
    PermissionDenied,
    PermissionPending,
    PersistenceFailure,
    SessionAlreadyActive,
)
from safetrail.services.location import DeviceLocationFeed
from safetrail.services.sessions import ROUTE_CONSUMER, SESSION_CONSUMER, SessionManager
from safetrail.services.store import SqlStore

T0 = datetime(2025, 7, 12, 8, 0, tzinfo=UTC)
KM_NORTH = 0.008993


class FakeClock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def fix_at(lat, lon, seconds=0, accuracy=5.0):
    return Fix(
        latitude=lat,
        longitude=lon,
        timestamp=T0 + timedelta(seconds=seconds),
        horizontal_accuracy=accuracy,
    )


@pytest.fixture
def store():
    engine = db.create_db_engine("sqlite://", poolclass=StaticPool)
    db.init_db(engine)
    return SqlStore(engine)


@pytest.fixture
def feed():
    return DeviceLocationFeed(authorization_status=PermissionState.AUTHORIZED_FULL)


@pytest.fixture
def notifier():
    n = MagicMock()
    n.notify_arrival = AsyncMock(return_value=True)
    return n


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(store, feed, notifier, clock):
    m = SessionManager(store=store, provider=feed, notifier=notifier, clock=clock)
    yield m
    m.shutdown()


# ============================================================================
# Starting
# ============================================================================

def test_start_creates_active_session(manager, store, feed, clock):
    session = manager.start()

    assert session.state == SessionState.ACTIVE
    assert session.start_time == clock.now
    assert session.start_location is None
    assert manager.current_session is session
    assert manager.tracker.is_tracking
    assert feed.is_updating
    assert manager.provider_consumers == {SESSION_CONSUMER}

    stored = store.get_session(session.id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.share_token == session.share_token


@pytest.mark.parametrize("state", [PermissionState.DENIED, PermissionState.RESTRICTED])
def test_start_refused_without_permission(manager, feed, store, state):
    feed.set_authorization(state)

    with pytest.raises(PermissionDenied):
        manager.start()

    assert manager.current_session is None
    assert store.list_sessions() == []
    assert not feed.is_updating


def test_start_with_undetermined_permission_requests_it(manager, feed, store):
    feed.set_authorization(PermissionState.UNDETERMINED)

    with pytest.raises(PermissionPending):
        manager.start()

    assert feed.permission_requested is True
    assert store.list_sessions() == []

    # The user grants access and retries
    feed.set_authorization(PermissionState.AUTHORIZED_LIMITED)
    assert manager.start().is_active


def test_second_start_is_rejected(manager, store):
    first = manager.start()

    with pytest.raises(SessionAlreadyActive) as exc_info:
        manager.start()

    assert exc_info.value.session_id == first.id
    assert len(store.list_sessions()) == 1


def test_start_rejected_when_store_has_active_session(store, feed, notifier, clock):
    """Test a fresh manager refuses to start over a session it has not resumed"""
    first = SessionManager(store=store, provider=feed, notifier=notifier, clock=clock)
    active = first.start()
    first.shutdown()

    second = SessionManager(store=store, provider=feed, notifier=notifier, clock=clock)
    with pytest.raises(SessionAlreadyActive):
        second.start()
    second.shutdown()

    assert store.get_active_session().id == active.id


def test_start_attaches_current_destination(manager, store):
    manager.set_destination(1.0, 2.0, "Home")
    session = manager.start()

    assert session.destination_name == "Home"
    assert session.destination_lat == 1.0
    assert store.get_session(session.id).destination_lon == 2.0


def test_start_surfaces_persistence_failure(manager, store, feed, monkeypatch):
    def broken(session):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "create_session", broken)

    with pytest.raises(PersistenceFailure):
        manager.start()

    assert manager.current_session is None
    assert not feed.is_updating


def test_start_with_destination_replaces_current_one(manager, store):
    manager.set_destination(1.0, 2.0, "Home")

    session = manager.start(Destination(latitude=3.0, longitude=4.0, name="Gym"))

    assert session.destination_name == "Gym"
    assert manager.detector.destination.name == "Gym"
    assert store.get_session(session.id).destination_lat == 3.0


def test_refused_start_keeps_destination_and_arrival(manager, store):
    manager.set_destination(0.0, 0.0, "Home")
    session = manager.start()
    manager.on_fix(fix_at(0.0001, 0, 60))
    manager.persistence.drain()

    with pytest.raises(SessionAlreadyActive):
        manager.start(Destination(latitude=5.0, longitude=5.0, name="Elsewhere"))

    assert manager.detector.destination.name == "Home"
    assert manager.detector.has_arrived is True
    assert session.destination_name == "Home"
    stored = store.get_session(session.id)
    assert stored.destination_name == "Home"
    assert stored.arrived_at == T0 + timedelta(seconds=60)


def test_start_without_permission_keeps_destination(manager, feed):
    manager.set_destination(0.0, 0.0, "Home")
    feed.set_authorization(PermissionState.DENIED)

    with pytest.raises(PermissionDenied):
        manager.start(Destination(latitude=5.0, longitude=5.0, name="Elsewhere"))

    assert manager.detector.destination.name == "Home"


def test_start_persistence_failure_keeps_destination(manager, store, monkeypatch):
    manager.set_destination(0.0, 0.0, "Home")
    monkeypatch.setattr(store, "create_session", MagicMock(side_effect=RuntimeError("disk full")))

    with pytest.raises(PersistenceFailure):
        manager.start(Destination(latitude=5.0, longitude=5.0, name="Elsewhere"))

    assert manager.detector.destination.name == "Home"


@pytest.mark.asyncio
async def test_start_async_creates_session(manager, store, feed):
    session = await manager.start_async(Destination(latitude=1.0, longitude=2.0, name="Home"))

    assert manager.current_session is session
    assert feed.is_updating
    assert store.get_session(session.id).destination_name == "Home"

    with pytest.raises(SessionAlreadyActive):
        await manager.start_async()


# ============================================================================
# Fixes
# ============================================================================

def test_fix_without_session_is_not_persisted(manager, store):
    manager.on_fix(fix_at(0, 0))
    manager.persistence.drain()

    assert manager.last_fix is not None
    assert store.list_sessions() == []


def test_fixes_are_recorded_in_order(manager, store, clock):
    session = manager.start()
    for i in range(5):
        clock.advance(10)
        manager.on_fix(fix_at(0, 0.001 * i, i * 10))
    manager.persistence.drain()

    records = store.list_locations(session.id)
    assert len(records) == 5
    assert [r.longitude for r in records] == pytest.approx([0.001 * i for i in range(5)])
    assert [r.timestamp for r in records] == sorted(r.timestamp for r in records)
    assert all(r.session_id == session.id for r in records)
    assert len(manager.tracker.route_points) == 5


def test_start_location_is_set_once(manager, store):
    session = manager.start()

    manager.on_fix(fix_at(1.0, 1.0, 0, accuracy=12.0))
    manager.on_fix(fix_at(2.0, 2.0, 10))
    manager.persistence.drain()

    assert session.start_location.latitude == 1.0
    assert session.start_location.horizontal_accuracy == 12.0
    stored = store.get_session(session.id)
    assert stored.start_location.latitude == 1.0
    assert stored.start_location.timestamp == T0


def test_arrival_is_recorded_on_session(manager, store, notifier):
    manager.set_destination(0.0, 0.0, "Home")
    session = manager.start()

    manager.on_fix(fix_at(KM_NORTH, 0, 0))
    assert session.arrived_at is None

    manager.on_fix(fix_at(0.0001, 0, 60))
    manager.persistence.drain()

    assert session.arrived_at == T0 + timedelta(seconds=60)
    assert store.get_session(session.id).arrived_at == T0 + timedelta(seconds=60)
    notifier.notify_arrival.assert_awaited_once_with("Home")


def test_set_destination_does_not_check_immediately(manager):
    manager.start()
    manager.on_fix(fix_at(0, 0))

    destination = manager.set_destination(0.0, 0.0)

    assert destination.has_arrived is False
    assert destination.distance_to_destination == 0.0


def test_destination_changes_follow_active_session(manager, store):
    session = manager.start()

    manager.set_destination(3.0, 4.0, "Gym")
    manager.persistence.drain()
    assert store.get_session(session.id).destination_name == "Gym"

    manager.clear_destination()
    manager.persistence.drain()
    assert store.get_session(session.id).destination_lat is None


@pytest.mark.asyncio
async def test_run_consumes_provider_stream(manager, feed, store):
    session = manager.start()
    feed.push(fix_at(0, 0, 0))
    feed.push(fix_at(0, 0.001, 10))

    consumer = asyncio.create_task(manager.run())
    while feed.pending:
        await asyncio.sleep(0)
    await asyncio.sleep(0)
    consumer.cancel()
    with suppress(asyncio.CancelledError):
        await consumer

    manager.persistence.drain()
    assert len(store.list_locations(session.id)) == 2


# ============================================================================
# Ending
# ============================================================================

def test_end_records_last_fix(manager, store, feed, clock):
    session = manager.start()
    manager.on_fix(fix_at(1.0, 1.0, 0))
    manager.on_fix(fix_at(1.5, 1.5, 30))
    clock.advance(600)

    ended = manager.end()

    assert ended is session
    assert ended.state == SessionState.ENDED
    assert ended.end_time == clock.now
    assert ended.end_location.latitude == 1.5
    assert manager.current_session is None
    assert not manager.tracker.is_tracking
    assert not feed.is_updating

    stored = store.get_session(session.id)
    assert stored.is_active is False
    assert stored.end_location.longitude == 1.5
    assert store.get_active_session() is None


def test_end_without_fixes_leaves_end_location_empty(manager, store):
    session = manager.start()

    ended = manager.end()

    assert ended.end_location is None
    assert ended.start_location is None
    assert store.get_session(session.id).end_location is None


def test_end_without_active_session_is_noop(manager):
    assert manager.end() is None


def test_fixes_after_end_are_dropped(manager, store):
    session = manager.start()
    manager.on_fix(fix_at(0, 0, 0))
    manager.end()

    manager.on_fix(fix_at(0, 0.001, 10))
    manager.persistence.drain()

    assert len(store.list_locations(session.id)) == 1


def test_new_start_creates_new_session(manager, store):
    first = manager.start()
    manager.end()
    second = manager.start()

    assert second.id != first.id
    assert second.share_token != first.share_token
    assert len(store.list_sessions()) == 2
    assert store.get_session(first.id).state == SessionState.ENDED


def test_end_persistence_failure_keeps_session_active(manager, store, feed, monkeypatch):
    session = manager.start()
    manager.on_fix(fix_at(1.0, 1.0, 0))
    manager.persistence.drain()
    monkeypatch.setattr(store, "update_session", MagicMock(side_effect=RuntimeError("disk full")))

    with pytest.raises(PersistenceFailure):
        manager.end()

    assert manager.current_session is session
    assert session.is_active is True
    assert session.end_time is None
    assert manager.tracker.is_tracking
    assert feed.is_updating
    assert store.get_active_session().id == session.id

    # Once the store recovers, ending works and a new session can start
    monkeypatch.undo()
    assert manager.end() is session
    assert not feed.is_updating
    assert store.get_session(session.id).is_active is False
    assert manager.start().id != session.id


@pytest.mark.asyncio
async def test_end_async_records_session(manager, store, feed, clock):
    session = await manager.start_async()
    manager.on_fix(fix_at(1.5, 1.5, 30))
    clock.advance(600)

    ended = await manager.end_async()

    assert ended is session
    assert ended.end_time == clock.now
    assert not feed.is_updating
    assert store.get_session(session.id).end_location.latitude == 1.5
    assert await manager.end_async() is None


@pytest.mark.asyncio
async def test_end_async_persistence_failure_keeps_session_active(manager, store, feed, monkeypatch):
    session = await manager.start_async()
    monkeypatch.setattr(store, "update_session", MagicMock(side_effect=RuntimeError("disk full")))

    with pytest.raises(PersistenceFailure):
        await manager.end_async()

    assert manager.current_session is session
    assert feed.is_updating


# ============================================================================
# Provider sharing with route tracking
# ============================================================================

def test_route_tracking_keeps_provider_after_session_ends(manager, feed):
    manager.start_route_tracking()
    manager.start()
    assert manager.provider_consumers == {ROUTE_CONSUMER, SESSION_CONSUMER}

    manager.end()

    # Route tracking was started independently, so it keeps running
    assert feed.is_updating
    assert manager.tracker.is_tracking
    assert manager.provider_consumers == {ROUTE_CONSUMER}

    manager.stop_route_tracking()
    assert not feed.is_updating


def test_stopping_route_keeps_provider_for_session(manager, feed):
    manager.start()
    manager.start_route_tracking()

    manager.stop_route_tracking()

    assert feed.is_updating
    assert manager.provider_consumers == {SESSION_CONSUMER}


def test_clear_route_keeps_session(manager):
    session = manager.start()
    manager.on_fix(fix_at(0, 0))

    manager.clear_route()

    assert manager.tracker.route_points == []
    assert manager.current_session is session


# ============================================================================
# Resume
# ============================================================================

def test_resume_picks_up_active_session(store, feed, notifier, clock):
    first = SessionManager(store=store, provider=feed, notifier=notifier, clock=clock)
    first.set_destination(0.0, 0.0, "Home")
    session = first.start()
    first.on_fix(fix_at(0, 0))
    first.shutdown()
    feed.stop()

    second = SessionManager(store=store, provider=feed, notifier=notifier, clock=clock)
    resumed = second.resume()

    assert resumed.id == session.id
    assert second.current_session.id == session.id
    assert second.detector.has_arrived is True
    assert second.detector.destination.name == "Home"
    assert second.tracker.is_tracking
    assert feed.is_updating

    assert second.end().id == session.id
    second.shutdown()


def test_resume_with_nothing_active(manager, feed):
    assert manager.resume() is None
    assert not feed.is_updating


# ============================================================================
# Sharing
# ============================================================================

def test_share_link_uses_token(manager, monkeypatch):
    monkeypatch.setattr(sessions_module.settings, "PUBLIC_BASE_URL", "https://safetrail.example/")
    session = manager.start()

    assert manager.share_link(session) == f"https://safetrail.example/t/{session.share_token}"


def test_share_message_with_location(manager):
    session = manager.start()
    manager.on_fix(fix_at(37.774929, -122.419416))

    message = manager.share_message(session)

    assert message.startswith("🛡️ I'm travelling with SafeTrail")
    assert "Current location: 37.7749, -122.4194" in message
    assert "?ll=37.774929,-122.419416" in message
    assert message.endswith(manager.share_link(session))


def test_share_message_without_location(manager):
    session = manager.start()

    message = manager.share_message(session)

    assert "Current location" not in message
    assert manager.current_map_link() is None
    assert "Follow my live location here:" in message
