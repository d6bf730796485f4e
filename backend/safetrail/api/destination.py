from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from safetrail.api.deps import get_manager
from safetrail.models import Destination
from safetrail.services.sessions import SessionManager

router = APIRouter(prefix="/api/v1/destination", tags=["destination"])


class DestinationUpdate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    name: str | None = None


@router.get("/", response_model=Optional[Destination])
async def get_destination(manager: SessionManager = Depends(get_manager)):
    return manager.detector.destination


@router.put("/", response_model=Destination)
async def set_destination(body: DestinationUpdate, manager: SessionManager = Depends(get_manager)):
    return manager.set_destination(body.latitude, body.longitude, body.name)


@router.delete("/")
async def clear_destination(manager: SessionManager = Depends(get_manager)):
    manager.clear_destination()
    return {"ok": True}
