"""
Route tracker - running statistics for one trip.

Accumulates fixes into an ordered route log and keeps distance, max speed,
average speed and elapsed time up to date. Distance is incremental: each fix
adds only the leg from the previous point, so work per fix is constant.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..models import Fix, RoutePoint, TripStats, utcnow
from .geo import calculate_haversine_distance

log = logging.getLogger(__name__)


class RouteTracker:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.route_points: list[RoutePoint] = []
        self.total_distance_meters = 0.0
        self.max_speed_kmh = 0.0
        self.average_speed_kmh = 0.0
        self.is_tracking = False
        self.start_time: datetime | None = None

    def start_tracking(self) -> None:
        """Start a new trip. Restarting while tracking discards the current trip."""
        self.is_tracking = True
        self.start_time = self.clock()
        self.route_points = []
        self.total_distance_meters = 0.0
        self.max_speed_kmh = 0.0
        self.average_speed_kmh = 0.0
        log.info("[Route] Started route tracking")

    def stop_tracking(self) -> None:
        # The route log stays visible until the next start or clear
        self.is_tracking = False
        self.start_time = None
        log.info("[Route] Stopped route tracking")

    def clear(self) -> None:
        self.route_points = []
        self.total_distance_meters = 0.0
        self.max_speed_kmh = 0.0
        self.average_speed_kmh = 0.0
        log.info("[Route] Cleared route")

    def add_location(self, fix: Fix) -> bool:
        """Append a fix to the trip. Returns False when not tracking."""
        if not self.is_tracking:
            return False

        point = RoutePoint.from_fix(fix)
        if self.route_points:
            previous = self.route_points[-1]
            self.total_distance_meters += calculate_haversine_distance(
                previous.latitude, previous.longitude, point.latitude, point.longitude
            )
        self.route_points.append(point)

        speed_kmh = fix.speed_kmh
        if speed_kmh > self.max_speed_kmh:
            self.max_speed_kmh = speed_kmh

        if self.start_time is not None:
            elapsed_hours = (self.clock() - self.start_time).total_seconds() / 3600.0
            if elapsed_hours > 0:
                self.average_speed_kmh = (self.total_distance_meters / 1000.0) / elapsed_hours

        log.debug(
            f"[Route] Added point #{len(self.route_points)}: "
            f"distance={self.total_distance_km:.2f}km, speed={speed_kmh:.1f}km/h"
        )
        return True

    @property
    def total_distance_km(self) -> float:
        return self.total_distance_meters / 1000.0

    @property
    def formatted_distance(self) -> str:
        return f"{self.total_distance_km:.2f}"

    @property
    def formatted_max_speed(self) -> str:
        return f"{self.max_speed_kmh:.1f}"

    @property
    def formatted_average_speed(self) -> str:
        return f"{self.average_speed_kmh:.1f}"

    @property
    def elapsed_time(self) -> str:
        if self.start_time is None:
            return "00:00:00"
        elapsed = max(0, int((self.clock() - self.start_time).total_seconds()))
        hours = elapsed // 3600
        minutes = elapsed % 3600 // 60
        seconds = elapsed % 60
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def stats(self) -> TripStats:
        return TripStats(
            is_tracking=self.is_tracking,
            start_time=self.start_time,
            point_count=len(self.route_points),
            total_distance_meters=self.total_distance_meters,
            max_speed_kmh=self.max_speed_kmh,
            average_speed_kmh=self.average_speed_kmh,
            distance_km=self.formatted_distance,
            max_speed=self.formatted_max_speed,
            average_speed=self.formatted_average_speed,
            elapsed_time=self.elapsed_time,
        )
