import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from safetrail import database as db
from safetrail.api import alerts, destination, location, route, sessions, share
from safetrail.api.deps import get_manager
from safetrail.services.background import drain_background

# Configure logging
logging.basicConfig(level=logging.INFO)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, pick up any active session and run the fix consumer."""
    db.init_db(db.engine)
    manager = get_manager()
    manager.resume()

    log.info("Starting fix consumer...")
    consumer = asyncio.create_task(manager.run())
    yield

    log.info("Stopping fix consumer...")
    consumer.cancel()
    with suppress(asyncio.CancelledError):
        await consumer
    await drain_background()
    await manager.notifier.close()
    manager.shutdown()


description = """
SafeTrail keeps track of a walk or commute: it records the route, notices
arrival at the destination, shares a live-location link, and alerts emergency
contacts when the panic trigger fires.
"""

tags_metadata = [
    {"name": "sessions", "description": "Start, end and review safety sessions"},
    {"name": "location", "description": "Fix uploads and location permission state"},
    {"name": "route", "description": "Route recording and trip statistics"},
    {"name": "destination", "description": "Destination and arrival status"},
    {"name": "alerts", "description": "Emergency alerts to contacts"},
    {"name": "share", "description": "Public live-location links"},
]

app = FastAPI(
    title="SafeTrail API",
    description=description,
    version="1.0.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "capacitor://localhost"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return JSONResponse({"ok": True})


app.include_router(sessions.router)
app.include_router(location.router)
app.include_router(route.router)
app.include_router(destination.router)
app.include_router(alerts.router)
app.include_router(share.router)
