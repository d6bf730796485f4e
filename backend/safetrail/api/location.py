"""Fix upload and permission reporting from the phone"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from safetrail.api.deps import get_feed
from safetrail.models import Fix, PermissionState
from safetrail.services.location import DeviceLocationFeed

router = APIRouter(prefix="/api/v1/location", tags=["location"])


class FixUpload(BaseModel):
    fixes: list[Fix] = Field(min_length=1)


class FixUploadResponse(BaseModel):
    accepted: int
    ignored: int


class PermissionUpdate(BaseModel):
    state: PermissionState


class PermissionStatus(BaseModel):
    state: PermissionState
    permission_requested: bool
    is_updating: bool


def permission_status(feed: DeviceLocationFeed) -> PermissionStatus:
    return PermissionStatus(
        state=feed.authorization_status,
        permission_requested=feed.permission_requested,
        is_updating=feed.is_updating,
    )


@router.post("/fixes", response_model=FixUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_fixes(body: FixUpload, feed: DeviceLocationFeed = Depends(get_feed)):
    """Queue fixes in the order the device recorded them."""
    ordered = sorted(body.fixes, key=lambda f: f.timestamp)
    accepted = sum(1 for fix in ordered if feed.push(fix))
    return FixUploadResponse(accepted=accepted, ignored=len(ordered) - accepted)


@router.get("/permission", response_model=PermissionStatus)
async def get_permission(feed: DeviceLocationFeed = Depends(get_feed)):
    """Polled by the phone; `permission_requested` asks it to show the system prompt."""
    return permission_status(feed)


@router.put("/permission", response_model=PermissionStatus)
async def update_permission(body: PermissionUpdate, feed: DeviceLocationFeed = Depends(get_feed)):
    feed.set_authorization(body.state)
    return permission_status(feed)
