"""Off-path work: notification coroutines and ordered store writes.

Fix delivery must never wait on a notification or a database round trip, so
both are handed off here. Coroutines go onto the running event loop (or run to
completion when there is none, e.g. from a worker thread). Store writes go to a
single worker thread, which keeps them in submission order.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Coroutine

from .errors import PersistenceFailure

log = logging.getLogger(__name__)

_pending: set[asyncio.Task] = set()


def _log_task_result(task: asyncio.Task, what: str) -> None:
    _pending.discard(task)
    if task.cancelled():
        log.warning(f"[Background] {what} cancelled")
        return
    exc = task.exception()
    if exc is not None:
        log.error(f"[Background] {what} failed: {exc}")


def spawn(coro: Coroutine[Any, Any, Any], what: str) -> asyncio.Task | None:
    """Fire and forget a coroutine. Errors are logged, never raised to the caller."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is None:
        try:
            asyncio.run(coro)
        except Exception as e:
            log.error(f"[Background] {what} failed: {e}")
        return None

    task = loop.create_task(coro)
    _pending.add(task)
    task.add_done_callback(lambda t: _log_task_result(t, what))
    return task


async def drain_background() -> None:
    """Wait for every spawned coroutine to finish."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


class PersistenceQueue:
    """Single-worker executor that serializes writes to the store."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="safetrail-store")

    def submit(self, fn: Callable[..., Any], *args: Any, what: str = "store write") -> Future:
        """Queue a write and return immediately; failures are only logged."""
        future = self._executor.submit(fn, *args)

        def _done(f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                log.error(f"[Store] PersistenceFailure during {what}: {exc}")

        future.add_done_callback(_done)
        return future

    def call(self, fn: Callable[..., Any], *args: Any, what: str = "store write") -> Any:
        """Queue a write behind any pending ones and wait for its result."""
        future = self._executor.submit(fn, *args)
        try:
            return future.result()
        except Exception as e:
            log.error(f"[Store] PersistenceFailure during {what}: {e}")
            raise PersistenceFailure(f"{what} failed: {e}") from e

    async def acall(self, fn: Callable[..., Any], *args: Any, what: str = "store write") -> Any:
        """Like `call`, but waits without blocking the event loop."""
        future = self._executor.submit(fn, *args)
        try:
            return await asyncio.wrap_future(future)
        except Exception as e:
            log.error(f"[Store] PersistenceFailure during {what}: {e}")
            raise PersistenceFailure(f"{what} failed: {e}") from e

    def drain(self, timeout: float | None = None) -> None:
        """Block until every write queued so far has run."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
