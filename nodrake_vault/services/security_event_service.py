"""
In-process log of OAuth security events.

Events are kept in a bounded window for inspection and statistics, written to
the vault logger at a level matching their severity, and an alert line is
logged once an event type reaches its threshold within the alert window for
one provider.
"""

import threading
from collections import Counter, deque
from datetime import timedelta
from typing import Deque, List, Optional

from ..config import SecurityConfig, get_config
from ..db.db_base import utc_now
from ..enums import Provider, SecurityEventType, SecuritySeverity
from ..exceptions import get_correlation_id
from ..schemas.security_schemas import SecurityEvent, SecurityStats
from ..utils.logger import get_logger

DEFAULT_SEVERITY = {
    SecurityEventType.STATE_VALIDATION_FAILURE: SecuritySeverity.MEDIUM,
    SecurityEventType.CSRF_ATTACK_DETECTED: SecuritySeverity.HIGH,
    SecurityEventType.INVALID_TOKEN_USAGE: SecuritySeverity.MEDIUM,
    SecurityEventType.IDENTITY_CONFLICT: SecuritySeverity.MEDIUM,
    SecurityEventType.DECRYPTION_FAILURE: SecuritySeverity.CRITICAL,
    SecurityEventType.SUSPICIOUS_CLIENT_BEHAVIOR: SecuritySeverity.HIGH,
}

_LOG_LEVEL = {
    SecuritySeverity.LOW: "info",
    SecuritySeverity.MEDIUM: "warning",
    SecuritySeverity.HIGH: "error",
    SecuritySeverity.CRITICAL: "critical",
}


class SecurityEventLogger:
    def __init__(self, config: Optional[SecurityConfig] = None):
        self.config = config or get_config().security
        self.logger = get_logger()
        self._events: Deque[SecurityEvent] = deque(maxlen=self.config.max_events)
        self._lock = threading.Lock()

    def record(
        self,
        event_type: SecurityEventType,
        provider: Provider,
        user_id: Optional[str] = None,
        severity: Optional[SecuritySeverity] = None,
        description: str = "",
        **details,
    ) -> SecurityEvent:
        """
        Record and log a security event.

        Args:
            event_type: What happened
            provider: Provider the event concerns
            user_id: Vault user involved, when known
            severity: Overrides the default severity for the event type
            description: Short human-readable summary
            **details: Extra non-secret context (sensitive keys are masked when logged)

        Returns:
            The stored event
        """
        event = SecurityEvent(
            event_type=event_type,
            severity=severity or DEFAULT_SEVERITY[event_type],
            provider=provider,
            description=description,
            user_id=user_id,
            correlation_id=get_correlation_id(),
            details=details,
        )

        with self._lock:
            self._events.append(event)
            count = self._count_recent(event_type, event.provider)

        log = getattr(self.logger, _LOG_LEVEL[event.severity])
        log(
            f"OAuth security event: {event_type.value}",
            extra={
                "event_id": event.event_id,
                "event_type": event_type.value,
                "severity": event.severity.value,
                "provider": event.provider.value,
                "user_id": user_id,
                "correlation_id": event.correlation_id,
                "description": description,
                **details,
            },
        )

        threshold = self.config.alert_thresholds.get(event_type.value)
        if threshold is not None and count >= threshold:
            self.logger.error(
                "OAuth security alert threshold exceeded",
                extra={
                    "event_type": event_type.value,
                    "provider": event.provider.value,
                    "count": count,
                    "threshold": threshold,
                    "window_seconds": self.config.alert_window_seconds,
                },
            )
        return event

    def _count_recent(self, event_type: SecurityEventType, provider: Provider) -> int:
        cutoff = utc_now() - timedelta(seconds=self.config.alert_window_seconds)
        return sum(
            1
            for e in self._events
            if e.event_type == event_type and e.provider == provider and e.timestamp > cutoff
        )

    def recent_events(
        self, hours: int = 1, provider: Optional[Provider] = None
    ) -> List[SecurityEvent]:
        cutoff = utc_now() - timedelta(hours=hours)
        with self._lock:
            return [
                e
                for e in self._events
                if e.timestamp > cutoff and (provider is None or e.provider == provider)
            ]

    def stats(self, hours: int = 24, provider: Optional[Provider] = None) -> SecurityStats:
        events = self.recent_events(hours, provider)
        return SecurityStats(
            total_events=len(events),
            events_by_type=dict(Counter(e.event_type.value for e in events)),
            events_by_severity=dict(Counter(e.severity.value for e in events)),
            events_by_provider=dict(Counter(e.provider.value for e in events)),
        )

    def cleanup(self, max_age_hours: Optional[int] = None) -> int:
        """Drop events older than ``max_age_hours``. Returns the number removed."""
        if max_age_hours is None:
            max_age_hours = self.config.event_retention_hours
        cutoff = utc_now() - timedelta(hours=max_age_hours)
        with self._lock:
            kept = [e for e in self._events if e.timestamp > cutoff]
            removed = len(self._events) - len(kept)
            self._events.clear()
            self._events.extend(kept)

        self.logger.info(
            "Cleaned up OAuth security events",
            extra={
                "removed": removed,
                "remaining_events": len(kept),
                "max_age_hours": max_age_hours,
            },
        )
        return removed
