import logging

import sqlalchemy as sa
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from safetrail import config

log = logging.getLogger(__name__)

metadata = sa.MetaData()

safety_sessions = sa.Table(
    "safety_sessions",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("share_token", sa.String(64), nullable=False, unique=True),
    sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
    sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
    sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("start_lat", sa.Float(), nullable=True),
    sa.Column("start_lon", sa.Float(), nullable=True),
    sa.Column("start_accuracy", sa.Float(), nullable=True),
    sa.Column("start_timestamp", sa.DateTime(timezone=True), nullable=True),
    sa.Column("end_lat", sa.Float(), nullable=True),
    sa.Column("end_lon", sa.Float(), nullable=True),
    sa.Column("end_accuracy", sa.Float(), nullable=True),
    sa.Column("end_timestamp", sa.DateTime(timezone=True), nullable=True),
    sa.Column("destination_name", sa.Text(), nullable=True),
    sa.Column("destination_lat", sa.Float(), nullable=True),
    sa.Column("destination_lon", sa.Float(), nullable=True),
    sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
)

location_records = sa.Table(
    "location_records",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column(
        "session_id",
        sa.String(36),
        sa.ForeignKey("safety_sessions.id", ondelete="CASCADE"),
        nullable=False,
    ),
    sa.Column("latitude", sa.Float(), nullable=False),
    sa.Column("longitude", sa.Float(), nullable=False),
    sa.Column("altitude", sa.Float(), nullable=True),
    sa.Column("horizontal_accuracy", sa.Float(), nullable=True),
    sa.Column("speed", sa.Float(), nullable=True),
    sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    sa.Index("idx_location_records_session_timestamp", "session_id", "timestamp"),
)

emergency_contacts = sa.Table(
    "emergency_contacts",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("phone_number", sa.Text(), nullable=False),
    sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)

notification_logs = sa.Table(
    "notification_logs",
    metadata,
    sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("notification_type", sa.String(16), nullable=False),  # 'sms' or 'push'
    sa.Column("recipient", sa.Text(), nullable=False),
    sa.Column("title", sa.Text(), nullable=False),
    sa.Column("body", sa.Text(), nullable=True),
    sa.Column("status", sa.String(16), nullable=False),  # 'sent' or 'failed'
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)


def normalize_url(connection_url: str) -> str:
    """Map the URL spellings hosting providers hand out onto the psycopg2 driver."""
    if connection_url.startswith("postgres://"):
        connection_url = connection_url.replace("postgres://", "postgresql+psycopg2://", 1)
    elif "postgresql+psycopg:" in connection_url:
        connection_url = connection_url.replace("postgresql+psycopg:", "postgresql+psycopg2:")
    return connection_url


def create_db_engine(connection_url: str, **kwargs) -> Engine:
    connection_url = normalize_url(connection_url)
    if connection_url.startswith("sqlite"):
        # The persistence queue writes from its own worker thread
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_size", 3)
        kwargs.setdefault("max_overflow", 7)
        kwargs.setdefault("pool_recycle", 300)
    return create_engine(connection_url, **kwargs)


def init_db(target: Engine) -> None:
    """Create any missing tables."""
    metadata.create_all(target)
    log.info(f"[Database] Schema ready on {target.url.render_as_string(hide_password=True)}")


engine = create_db_engine(config.get_settings().DATABASE_URL)
