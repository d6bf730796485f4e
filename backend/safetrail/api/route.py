"""Route recording endpoints"""
from fastapi import APIRouter, Depends

from safetrail.api.deps import get_manager
from safetrail.models import RoutePoint, TripStats
from safetrail.services.sessions import SessionManager

router = APIRouter(prefix="/api/v1/route", tags=["route"])


@router.get("/", response_model=TripStats)
async def get_route_stats(manager: SessionManager = Depends(get_manager)):
    return manager.tracker.stats()


@router.get("/points", response_model=list[RoutePoint])
async def get_route_points(manager: SessionManager = Depends(get_manager)):
    return list(manager.tracker.route_points)


@router.post("/start", response_model=TripStats)
async def start_route(manager: SessionManager = Depends(get_manager)):
    """Start recording a route; discards the previously recorded one."""
    manager.start_route_tracking()
    return manager.tracker.stats()


@router.post("/stop", response_model=TripStats)
async def stop_route(manager: SessionManager = Depends(get_manager)):
    manager.stop_route_tracking()
    return manager.tracker.stats()


@router.post("/clear", response_model=TripStats)
async def clear_route(manager: SessionManager = Depends(get_manager)):
    manager.clear_route()
    return manager.tracker.stats()
