"""
Pydantic schemas for security events.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..db.db_base import utc_now
from ..enums import Provider, SecurityEventType, SecuritySeverity


class SecurityEvent(BaseModel):
    """A security-relevant occurrence in an OAuth flow or token operation."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: SecurityEventType
    severity: SecuritySeverity
    provider: Provider
    description: str = ""
    user_id: Optional[str] = None
    correlation_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


class SecurityStats(BaseModel):
    """Event counts over a time window."""

    total_events: int = 0
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    events_by_severity: Dict[str, int] = Field(default_factory=dict)
    events_by_provider: Dict[str, int] = Field(default_factory=dict)
