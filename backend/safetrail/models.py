"""Domain models shared by the tracking core, the store and the API."""
from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class PermissionState(str, Enum):
    UNDETERMINED = "undetermined"
    DENIED = "denied"
    RESTRICTED = "restricted"
    AUTHORIZED_LIMITED = "authorizedLimited"
    AUTHORIZED_FULL = "authorizedFull"

    @property
    def is_authorized(self) -> bool:
        return self in (PermissionState.AUTHORIZED_LIMITED, PermissionState.AUTHORIZED_FULL)


class SessionState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    ENDED = "ended"


def parse_datetime(dt_value: Any) -> datetime | None:
    """Parse datetime from string, epoch seconds or datetime; result is UTC-aware."""
    if dt_value is None:
        return None
    if isinstance(dt_value, (int, float)):
        return datetime.fromtimestamp(dt_value, tz=UTC)
    if isinstance(dt_value, str):
        dt_value = datetime.fromisoformat(dt_value.replace(' ', 'T').replace('Z', '+00:00'))
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=UTC)
    return dt_value.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


class Fix(BaseModel):
    """One timestamped position sample, in canonical units (degrees, meters, m/s)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    latitude: float = Field(ge=-90, le=90, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(
        ge=-180, le=180, validation_alias=AliasChoices("longitude", "lon", "lng")
    )
    timestamp: datetime
    horizontal_accuracy: float | None = Field(
        default=None, validation_alias=AliasChoices("horizontal_accuracy", "accuracy")
    )
    speed: float = 0.0
    altitude: float | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> datetime | None:
        return parse_datetime(value)

    @field_validator("speed", mode="before")
    @classmethod
    def _clamp_speed(cls, value: Any) -> float:
        # Devices report a negative speed when it is unknown
        if value is None:
            return 0.0
        return max(0.0, float(value))

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> Fix:
        return cls.model_validate(dict(raw))

    @property
    def speed_kmh(self) -> float:
        return self.speed * 3.6

    @property
    def coordinates(self) -> tuple[float, float]:
        return self.latitude, self.longitude


class RoutePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    latitude: float
    longitude: float
    timestamp: datetime
    speed: float
    altitude: float | None = None

    @classmethod
    def from_fix(cls, fix: Fix) -> RoutePoint:
        return cls(
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
            speed=fix.speed,
            altitude=fix.altitude,
        )


class LocationSnapshot(BaseModel):
    latitude: float
    longitude: float
    horizontal_accuracy: float | None = None
    timestamp: datetime

    @classmethod
    def from_fix(cls, fix: Fix) -> LocationSnapshot:
        return cls(
            latitude=fix.latitude,
            longitude=fix.longitude,
            horizontal_accuracy=fix.horizontal_accuracy,
            timestamp=fix.timestamp,
        )


class Destination(BaseModel):
    latitude: float
    longitude: float
    name: str | None = None
    has_arrived: bool = False
    distance_to_destination: float = 0.0
    arrived_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or "your destination"


class SafetySession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    share_token: str = Field(default_factory=lambda: secrets.token_urlsafe(16))
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    is_active: bool = True
    start_location: LocationSnapshot | None = None
    end_location: LocationSnapshot | None = None
    destination_name: str | None = None
    destination_lat: float | None = None
    destination_lon: float | None = None
    arrived_at: datetime | None = None

    @property
    def state(self) -> SessionState:
        if self.is_active:
            return SessionState.ACTIVE
        if self.end_time is not None:
            return SessionState.ENDED
        return SessionState.INACTIVE

    def attach_destination(self, destination: Destination | None) -> None:
        if destination is None:
            self.destination_name = None
            self.destination_lat = None
            self.destination_lon = None
            self.arrived_at = None
            return
        self.destination_name = destination.name
        self.destination_lat = destination.latitude
        self.destination_lon = destination.longitude
        self.arrived_at = destination.arrived_at


class EmergencyContact(BaseModel):
    id: int
    name: str
    phone_number: str
    is_enabled: bool = True
    created_at: datetime


class LocationRecord(BaseModel):
    id: int | None = None
    session_id: str
    latitude: float
    longitude: float
    altitude: float | None = None
    horizontal_accuracy: float | None = None
    speed: float | None = None
    timestamp: datetime

    @classmethod
    def from_fix(cls, fix: Fix, session_id: str) -> LocationRecord:
        return cls(
            session_id=session_id,
            latitude=fix.latitude,
            longitude=fix.longitude,
            altitude=fix.altitude,
            horizontal_accuracy=fix.horizontal_accuracy,
            speed=fix.speed,
            timestamp=fix.timestamp,
        )


class TripStats(BaseModel):
    is_tracking: bool
    start_time: datetime | None
    point_count: int
    total_distance_meters: float
    max_speed_kmh: float
    average_speed_kmh: float
    distance_km: str
    max_speed: str
    average_speed: str
    elapsed_time: str
