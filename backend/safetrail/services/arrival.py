from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..models import Destination, Fix
from .background import spawn
from .geo import calculate_haversine_distance

if TYPE_CHECKING:
    from .notifications import Notifier

log = logging.getLogger(__name__)

# Radius that absorbs consumer GPS error near the destination
ARRIVAL_THRESHOLD_METERS = 50.0


class ArrivalDetector:
    """Latches arrival at the current destination and notifies once."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self.destination: Destination | None = None

    def set_destination(self, latitude: float, longitude: float, name: str | None = None) -> Destination:
        self.destination = Destination(latitude=latitude, longitude=longitude, name=name)
        log.info(f"[Arrival] Destination set to {self.destination.display_name} ({latitude}, {longitude})")
        return self.destination

    def clear_destination(self) -> None:
        self.destination = None
        log.info("[Arrival] Destination cleared")

    @property
    def has_arrived(self) -> bool:
        return self.destination is not None and self.destination.has_arrived

    def check_arrival(self, fix: Fix) -> bool:
        """Update the distance to the destination; True only on the fix that arrives."""
        destination = self.destination
        if destination is None or destination.has_arrived:
            return False

        distance = calculate_haversine_distance(
            fix.latitude, fix.longitude, destination.latitude, destination.longitude
        )
        destination.distance_to_destination = distance

        if distance > ARRIVAL_THRESHOLD_METERS:
            return False

        destination.has_arrived = True
        destination.arrived_at = fix.timestamp
        log.info(f"[Arrival] Arrived at {destination.display_name} ({distance:.0f}m away)")
        spawn(
            self.notifier.notify_arrival(destination.display_name),
            what=f"arrival notification for {destination.display_name}",
        )
        return True
