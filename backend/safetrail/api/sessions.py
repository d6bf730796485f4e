"""Safety session endpoints"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from safetrail.api.deps import get_manager
from safetrail.models import Destination, LocationRecord, LocationSnapshot, SafetySession, SessionState
from safetrail.services.errors import (
    PermissionDenied,
    PermissionPending,
    PersistenceFailure,
    SessionAlreadyActive,
)
from safetrail.services.sessions import SessionManager

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class DestinationIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    name: str | None = None


class SessionStart(BaseModel):
    destination: DestinationIn | None = None


class SessionResponse(BaseModel):
    id: str
    state: SessionState
    share_token: str
    share_link: str
    start_time: datetime
    end_time: datetime | None
    is_active: bool
    start_location: LocationSnapshot | None
    end_location: LocationSnapshot | None
    destination_name: str | None
    destination_lat: float | None
    destination_lon: float | None
    arrived_at: datetime | None


class ShareResponse(BaseModel):
    link: str
    message: str
    map_link: str | None


def to_response(session: SafetySession, manager: SessionManager) -> SessionResponse:
    return SessionResponse(
        **session.model_dump(),
        state=session.state,
        share_link=manager.share_link(session),
    )


def load_session(session_id: str, manager: SessionManager) -> SafetySession:
    current = manager.current_session
    if current is not None and current.id == session_id:
        return current
    session = manager.store.get_session(session_id)
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return session


@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_session(body: SessionStart | None = None, manager: SessionManager = Depends(get_manager)):
    """Start safety mode, optionally heading for a new destination."""
    destination = None
    if body is not None and body.destination is not None:
        destination = Destination(**body.destination.model_dump())

    try:
        session = await manager.start_async(destination)
    except PermissionDenied as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except PermissionPending as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SessionAlreadyActive as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        log.error(f"[Sessions] Could not start session: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not save session")

    return to_response(session, manager)


@router.post("/end", response_model=Optional[SessionResponse])
async def end_session(manager: SessionManager = Depends(get_manager)):
    """End safety mode. Returns null when nothing was active."""
    try:
        session = await manager.end_async()
    except PersistenceFailure as e:
        log.error(f"[Sessions] Could not end session: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not save session")
    return to_response(session, manager) if session else None


@router.get("/active", response_model=Optional[SessionResponse])
async def get_active_session(manager: SessionManager = Depends(get_manager)):
    session = manager.current_session
    return to_response(session, manager) if session else None


@router.get("/", response_model=list[SessionResponse])
async def list_sessions(manager: SessionManager = Depends(get_manager)):
    return [to_response(s, manager) for s in manager.store.list_sessions()]


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, manager: SessionManager = Depends(get_manager)):
    return to_response(load_session(session_id, manager), manager)


@router.get("/{session_id}/locations", response_model=list[LocationRecord])
async def get_session_locations(session_id: str, manager: SessionManager = Depends(get_manager)):
    load_session(session_id, manager)
    return manager.store.list_locations(session_id)


@router.get("/{session_id}/share", response_model=ShareResponse)
async def share_session(session_id: str, manager: SessionManager = Depends(get_manager)):
    """Shareable live link and message for a session."""
    session = load_session(session_id, manager)
    return ShareResponse(
        link=manager.share_link(session),
        message=manager.share_message(session),
        map_link=manager.current_map_link(),
    )


@router.delete("/{session_id}")
async def delete_session(session_id: str, manager: SessionManager = Depends(get_manager)):
    """Delete an ended session and its recorded locations."""
    session = load_session(session_id, manager)
    if session.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="End the session before deleting it"
        )
    try:
        await manager.persistence.acall(manager.store.delete_session, session_id, what="delete session")
    except PersistenceFailure as e:
        log.error(f"[Sessions] Could not delete session {session_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Could not delete session")
    return {"ok": True}
