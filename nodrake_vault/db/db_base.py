"""
Base column mixins and time helpers shared by the vault models.

Timestamps are stored timezone-aware. SQLite drops the offset on the way
back, so values read from it go through ``ensure_utc`` before comparison.
"""

import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Column, DateTime, String


def utc_now():
    """Timezone-aware now; the default clock for services and column defaults."""
    return datetime.now(UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (as returned by SQLite); convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TimestampMixin:
    """created_at and updated_at, both stored with their UTC offset."""

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class UUIDMixin:
    """String UUID primary key, portable between SQLite and Postgres."""

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
