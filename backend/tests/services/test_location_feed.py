"""Tests for the device-fed location provider and off-path helpers"""
import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from safetrail.models import Fix, PermissionState
from safetrail.services.background import PersistenceQueue, drain_background, spawn
from safetrail.services.errors import PersistenceFailure
from safetrail.services.location import DeviceLocationFeed

T0 = datetime(2025, 7, 12, 8, 0, tzinfo=UTC)


def fix_at(seconds):
    return Fix(latitude=0, longitude=0, timestamp=T0 + timedelta(seconds=seconds))


def test_push_ignored_while_stopped():
    feed = DeviceLocationFeed()
    assert feed.push(fix_at(0)) is False
    assert feed.pending == 0


def test_full_buffer_drops_oldest():
    feed = DeviceLocationFeed(maxsize=2)
    feed.start()

    for i in range(3):
        assert feed.push(fix_at(i)) is True

    assert feed.pending == 2
    assert feed.dropped == 1
    assert feed._queue.get_nowait().timestamp == T0 + timedelta(seconds=1)


@pytest.mark.asyncio
async def test_fixes_stream_in_order():
    feed = DeviceLocationFeed()
    feed.start()
    for i in range(3):
        feed.push(fix_at(i))

    stream = feed.fixes()
    received = [await stream.__anext__() for _ in range(3)]
    await stream.aclose()

    assert [f.timestamp for f in received] == [T0 + timedelta(seconds=i) for i in range(3)]


def test_request_permission_only_when_undetermined():
    feed = DeviceLocationFeed()
    assert feed.request_permission() == PermissionState.UNDETERMINED
    assert feed.permission_requested is True

    feed.set_authorization(PermissionState.AUTHORIZED_FULL)
    assert feed.permission_requested is False
    assert feed.request_permission() == PermissionState.AUTHORIZED_FULL
    assert feed.permission_requested is False


def test_persistence_queue_keeps_order():
    queue = PersistenceQueue()
    seen = []
    for i in range(20):
        queue.submit(seen.append, i)
    queue.drain()
    queue.close()

    assert seen == list(range(20))


def test_persistence_queue_call_raises_failure():
    queue = PersistenceQueue()

    def broken():
        raise RuntimeError("disk full")

    with pytest.raises(PersistenceFailure):
        queue.call(broken, what="broken write")

    # A failed fire-and-forget write does not stop later ones
    queue.submit(broken)
    assert queue.call(lambda: 42) == 42
    queue.close()


@pytest.mark.asyncio
async def test_persistence_queue_acall():
    queue = PersistenceQueue()
    seen = []
    queue.submit(seen.append, 1)

    assert await queue.acall(lambda: len(seen)) == 1

    def broken():
        raise RuntimeError("disk full")

    with pytest.raises(PersistenceFailure):
        await queue.acall(broken, what="broken write")
    queue.close()


@pytest.mark.asyncio
async def test_spawn_logs_failures_instead_of_raising():
    async def boom():
        raise RuntimeError("push failed")

    task = spawn(boom(), what="test push")
    await drain_background()

    assert task.done()
    assert isinstance(task.exception(), RuntimeError)
    await asyncio.sleep(0)
