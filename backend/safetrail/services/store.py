"""Persistence for sessions, location records, contacts and notification logs."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

import sqlalchemy
from sqlalchemy.engine import Engine

from ..models import (
    EmergencyContact,
    LocationRecord,
    LocationSnapshot,
    SafetySession,
    parse_datetime,
    utcnow,
)

log = logging.getLogger(__name__)


class Store(Protocol):
    def create_session(self, session: SafetySession) -> None: ...
    def update_session(self, session: SafetySession) -> None: ...
    def get_session(self, session_id: str) -> SafetySession | None: ...
    def get_session_by_token(self, share_token: str) -> SafetySession | None: ...
    def get_active_session(self) -> SafetySession | None: ...
    def list_sessions(self) -> list[SafetySession]: ...
    def delete_session(self, session_id: str) -> bool: ...
    def append_location(self, record: LocationRecord) -> int: ...
    def list_locations(self, session_id: str) -> list[LocationRecord]: ...
    def latest_location(self, session_id: str) -> LocationRecord | None: ...
    def add_contact(self, name: str, phone_number: str, is_enabled: bool = True) -> EmergencyContact: ...
    def list_contacts(self, enabled_only: bool = False) -> list[EmergencyContact]: ...
    def set_contact_enabled(self, contact_id: int, is_enabled: bool) -> bool: ...
    def delete_contact(self, contact_id: int) -> bool: ...
    def log_notification(
        self,
        notification_type: str,
        recipient: str,
        title: str,
        body: str | None,
        status: str,
        error_message: str | None = None,
    ) -> None: ...


SESSION_COLUMNS = """
    id, share_token, start_time, end_time, is_active,
    start_lat, start_lon, start_accuracy, start_timestamp,
    end_lat, end_lon, end_accuracy, end_timestamp,
    destination_name, destination_lat, destination_lon, arrived_at
"""

LOCATION_COLUMNS = "id, session_id, latitude, longitude, altitude, horizontal_accuracy, speed, timestamp"


def to_iso8601(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _snapshot(row: Any, prefix: str) -> LocationSnapshot | None:
    lat = row[f"{prefix}_lat"]
    lon = row[f"{prefix}_lon"]
    if lat is None or lon is None:
        return None
    return LocationSnapshot(
        latitude=lat,
        longitude=lon,
        horizontal_accuracy=row[f"{prefix}_accuracy"],
        timestamp=parse_datetime(row[f"{prefix}_timestamp"]),
    )


def session_from_row(row: Any) -> SafetySession:
    m = row._mapping
    return SafetySession(
        id=m["id"],
        share_token=m["share_token"],
        start_time=parse_datetime(m["start_time"]),
        end_time=parse_datetime(m["end_time"]),
        is_active=bool(m["is_active"]),
        start_location=_snapshot(m, "start"),
        end_location=_snapshot(m, "end"),
        destination_name=m["destination_name"],
        destination_lat=m["destination_lat"],
        destination_lon=m["destination_lon"],
        arrived_at=parse_datetime(m["arrived_at"]),
    )


def session_params(session: SafetySession) -> dict[str, Any]:
    start = session.start_location
    end = session.end_location
    return {
        "id": session.id,
        "share_token": session.share_token,
        "start_time": to_iso8601(session.start_time),
        "end_time": to_iso8601(session.end_time),
        "is_active": session.is_active,
        "start_lat": start.latitude if start else None,
        "start_lon": start.longitude if start else None,
        "start_accuracy": start.horizontal_accuracy if start else None,
        "start_timestamp": to_iso8601(start.timestamp) if start else None,
        "end_lat": end.latitude if end else None,
        "end_lon": end.longitude if end else None,
        "end_accuracy": end.horizontal_accuracy if end else None,
        "end_timestamp": to_iso8601(end.timestamp) if end else None,
        "destination_name": session.destination_name,
        "destination_lat": session.destination_lat,
        "destination_lon": session.destination_lon,
        "arrived_at": to_iso8601(session.arrived_at),
    }


def location_from_row(row: Any) -> LocationRecord:
    m = dict(row._mapping)
    m["timestamp"] = parse_datetime(m["timestamp"])
    return LocationRecord(**m)


def contact_from_row(row: Any) -> EmergencyContact:
    m = dict(row._mapping)
    m["is_enabled"] = bool(m["is_enabled"])
    m["created_at"] = parse_datetime(m["created_at"])
    return EmergencyContact(**m)


class SqlStore:
    """Store backed by any SQLAlchemy engine (SQLite locally, PostgreSQL in production)."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: SafetySession) -> None:
        with self.engine.begin() as connection:
            connection.execute(
                sqlalchemy.text(
                    """
                    INSERT INTO safety_sessions (
                        id, share_token, start_time, end_time, is_active,
                        start_lat, start_lon, start_accuracy, start_timestamp,
                        end_lat, end_lon, end_accuracy, end_timestamp,
                        destination_name, destination_lat, destination_lon, arrived_at
                    )
                    VALUES (
                        :id, :share_token, :start_time, :end_time, :is_active,
                        :start_lat, :start_lon, :start_accuracy, :start_timestamp,
                        :end_lat, :end_lon, :end_accuracy, :end_timestamp,
                        :destination_name, :destination_lat, :destination_lon, :arrived_at
                    )
                    """
                ),
                session_params(session)
            )
        log.info(f"[Store] Created session {session.id}")

    def update_session(self, session: SafetySession) -> None:
        with self.engine.begin() as connection:
            connection.execute(
                sqlalchemy.text(
                    """
                    UPDATE safety_sessions
                    SET end_time = :end_time,
                        is_active = :is_active,
                        start_lat = :start_lat,
                        start_lon = :start_lon,
                        start_accuracy = :start_accuracy,
                        start_timestamp = :start_timestamp,
                        end_lat = :end_lat,
                        end_lon = :end_lon,
                        end_accuracy = :end_accuracy,
                        end_timestamp = :end_timestamp,
                        destination_name = :destination_name,
                        destination_lat = :destination_lat,
                        destination_lon = :destination_lon,
                        arrived_at = :arrived_at
                    WHERE id = :id
                    """
                ),
                session_params(session)
            )

    def get_session(self, session_id: str) -> SafetySession | None:
        with self.engine.begin() as connection:
            row = connection.execute(
                sqlalchemy.text(f"SELECT {SESSION_COLUMNS} FROM safety_sessions WHERE id = :id"),
                {"id": session_id}
            ).fetchone()
        return session_from_row(row) if row else None

    def get_session_by_token(self, share_token: str) -> SafetySession | None:
        with self.engine.begin() as connection:
            row = connection.execute(
                sqlalchemy.text(f"SELECT {SESSION_COLUMNS} FROM safety_sessions WHERE share_token = :token"),
                {"token": share_token}
            ).fetchone()
        return session_from_row(row) if row else None

    def get_active_session(self) -> SafetySession | None:
        with self.engine.begin() as connection:
            row = connection.execute(
                sqlalchemy.text(
                    f"""
                    SELECT {SESSION_COLUMNS} FROM safety_sessions
                    WHERE is_active = :active
                    ORDER BY start_time DESC
                    LIMIT 1
                    """
                ),
                {"active": True}
            ).fetchone()
        return session_from_row(row) if row else None

    def list_sessions(self) -> list[SafetySession]:
        with self.engine.begin() as connection:
            rows = connection.execute(
                sqlalchemy.text(f"SELECT {SESSION_COLUMNS} FROM safety_sessions ORDER BY start_time DESC")
            ).fetchall()
        return [session_from_row(r) for r in rows]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and every location record it owns."""
        with self.engine.begin() as connection:
            connection.execute(
                sqlalchemy.text("DELETE FROM location_records WHERE session_id = :id"),
                {"id": session_id}
            )
            result = connection.execute(
                sqlalchemy.text("DELETE FROM safety_sessions WHERE id = :id"),
                {"id": session_id}
            )
        deleted = result.rowcount > 0
        if deleted:
            log.info(f"[Store] Deleted session {session_id} and its location records")
        return deleted

    # ------------------------------------------------------------------
    # Location records
    # ------------------------------------------------------------------

    def append_location(self, record: LocationRecord) -> int:
        with self.engine.begin() as connection:
            location_id = connection.execute(
                sqlalchemy.text(
                    """
                    INSERT INTO location_records
                    (session_id, latitude, longitude, altitude, horizontal_accuracy, speed, timestamp)
                    VALUES (:session_id, :latitude, :longitude, :altitude, :horizontal_accuracy, :speed, :timestamp)
                    RETURNING id
                    """
                ),
                {
                    "session_id": record.session_id,
                    "latitude": record.latitude,
                    "longitude": record.longitude,
                    "altitude": record.altitude,
                    "horizontal_accuracy": record.horizontal_accuracy,
                    "speed": record.speed,
                    "timestamp": to_iso8601(record.timestamp),
                }
            ).scalar_one()
        return location_id

    def list_locations(self, session_id: str) -> list[LocationRecord]:
        with self.engine.begin() as connection:
            rows = connection.execute(
                sqlalchemy.text(
                    f"""
                    SELECT {LOCATION_COLUMNS} FROM location_records
                    WHERE session_id = :session_id
                    ORDER BY timestamp, id
                    """
                ),
                {"session_id": session_id}
            ).fetchall()
        return [location_from_row(r) for r in rows]

    def latest_location(self, session_id: str) -> LocationRecord | None:
        with self.engine.begin() as connection:
            row = connection.execute(
                sqlalchemy.text(
                    f"""
                    SELECT {LOCATION_COLUMNS} FROM location_records
                    WHERE session_id = :session_id
                    ORDER BY timestamp DESC, id DESC
                    LIMIT 1
                    """
                ),
                {"session_id": session_id}
            ).fetchone()
        return location_from_row(row) if row else None

    # ------------------------------------------------------------------
    # Emergency contacts
    # ------------------------------------------------------------------

    def add_contact(self, name: str, phone_number: str, is_enabled: bool = True) -> EmergencyContact:
        created_at = utcnow()
        with self.engine.begin() as connection:
            contact_id = connection.execute(
                sqlalchemy.text(
                    """
                    INSERT INTO emergency_contacts (name, phone_number, is_enabled, created_at)
                    VALUES (:name, :phone_number, :is_enabled, :created_at)
                    RETURNING id
                    """
                ),
                {
                    "name": name,
                    "phone_number": phone_number,
                    "is_enabled": is_enabled,
                    "created_at": to_iso8601(created_at),
                }
            ).scalar_one()
        return EmergencyContact(
            id=contact_id,
            name=name,
            phone_number=phone_number,
            is_enabled=is_enabled,
            created_at=created_at,
        )

    def list_contacts(self, enabled_only: bool = False) -> list[EmergencyContact]:
        query = "SELECT id, name, phone_number, is_enabled, created_at FROM emergency_contacts"
        params: dict[str, Any] = {}
        if enabled_only:
            query += " WHERE is_enabled = :enabled"
            params["enabled"] = True
        query += " ORDER BY id"
        with self.engine.begin() as connection:
            rows = connection.execute(sqlalchemy.text(query), params).fetchall()
        return [contact_from_row(r) for r in rows]

    def set_contact_enabled(self, contact_id: int, is_enabled: bool) -> bool:
        with self.engine.begin() as connection:
            result = connection.execute(
                sqlalchemy.text("UPDATE emergency_contacts SET is_enabled = :enabled WHERE id = :id"),
                {"enabled": is_enabled, "id": contact_id}
            )
        return result.rowcount > 0

    def delete_contact(self, contact_id: int) -> bool:
        with self.engine.begin() as connection:
            result = connection.execute(
                sqlalchemy.text("DELETE FROM emergency_contacts WHERE id = :id"),
                {"id": contact_id}
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Notification delivery log
    # ------------------------------------------------------------------

    def log_notification(
        self,
        notification_type: str,
        recipient: str,
        title: str,
        body: str | None,
        status: str,
        error_message: str | None = None,
    ) -> None:
        with self.engine.begin() as connection:
            connection.execute(
                sqlalchemy.text(
                    """
                    INSERT INTO notification_logs
                    (notification_type, recipient, title, body, status, error_message, created_at)
                    VALUES (:notification_type, :recipient, :title, :body, :status, :error_message, :created_at)
                    """
                ),
                {
                    "notification_type": notification_type,
                    "recipient": recipient,
                    "title": title,
                    "body": body,
                    "status": status,
                    "error_message": error_message,
                    "created_at": to_iso8601(utcnow()),
                }
            )
