"""Public live-location view behind a session's share token (no auth required)"""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from safetrail.api.deps import get_manager
from safetrail.models import LocationRecord, SessionState
from safetrail.services.geo import map_link
from safetrail.services.sessions import SessionManager

router = APIRouter(prefix="/t", tags=["share"])


class LiveLocationResponse(BaseModel):
    state: SessionState
    started_at: datetime
    ended_at: datetime | None
    last_location: LocationRecord | None
    map_link: str | None
    destination_name: str | None
    arrived: bool
    arrived_at: datetime | None


@router.get("/{token}", response_model=LiveLocationResponse)
async def view_shared_session(token: str, manager: SessionManager = Depends(get_manager)):
    current = manager.current_session
    if current is not None and current.share_token == token:
        session = current
    else:
        session = manager.store.get_session_by_token(token)
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invalid or expired share link"
        )

    last = manager.store.latest_location(session.id)
    return LiveLocationResponse(
        state=session.state,
        started_at=session.start_time,
        ended_at=session.end_time,
        last_location=last,
        map_link=map_link(last.latitude, last.longitude) if last else None,
        destination_name=session.destination_name,
        arrived=session.arrived_at is not None,
        arrived_at=session.arrived_at,
    )
