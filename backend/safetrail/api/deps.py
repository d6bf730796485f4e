"""Process-wide service objects, handed to endpoints through FastAPI dependencies."""
from functools import lru_cache

from safetrail import database as db
from safetrail.services.alerts import AlertDispatcher
from safetrail.services.background import PersistenceQueue
from safetrail.services.location import DeviceLocationFeed
from safetrail.services.notifications import Notifier
from safetrail.services.sessions import SessionManager
from safetrail.services.store import SqlStore


@lru_cache()
def get_store() -> SqlStore:
    return SqlStore(db.engine)


@lru_cache()
def get_feed() -> DeviceLocationFeed:
    return DeviceLocationFeed()


@lru_cache()
def get_persistence() -> PersistenceQueue:
    return PersistenceQueue()


@lru_cache()
def get_notifier() -> Notifier:
    return Notifier(store=get_store(), persistence=get_persistence())


@lru_cache()
def get_manager() -> SessionManager:
    return SessionManager(
        store=get_store(),
        provider=get_feed(),
        notifier=get_notifier(),
        persistence=get_persistence(),
    )


@lru_cache()
def get_dispatcher() -> AlertDispatcher:
    return AlertDispatcher(get_notifier())
