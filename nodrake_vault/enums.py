"""
Enums used across the nodrake_vault package.

This module contains enum definitions that are used by multiple modules
to avoid circular import issues.
"""

import enum


class Provider(str, enum.Enum):
    """Identity and music providers a user can link."""

    GOOGLE = "google"
    APPLE = "apple"
    GITHUB = "github"
    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"
    YOUTUBE_MUSIC = "youtube_music"
    TIDAL = "tidal"


class Capability(str, enum.Enum):
    """Operations a provider adapter may support."""

    AUTH_URL = "auth_url"
    CODE_EXCHANGE = "code_exchange"
    USER_INFO = "user_info"
    REFRESH = "refresh"
    REVOKE = "revoke"


class FlowPurposeKind(str, enum.Enum):
    """Why an OAuth flow was started."""

    LOGIN = "login"
    LINK = "link"


class FlowStage(str, enum.Enum):
    """Stages of an OAuth flow, logged as the flow progresses."""

    INITIATED = "initiated"
    AWAITING_CALLBACK = "awaiting_callback"
    CODE_EXCHANGED = "code_exchanged"
    REJECTED = "rejected"
    USER_MATCHED = "user_matched"
    USER_CREATED = "user_created"
    ACCOUNT_LINKED = "account_linked"
    COMPLETE = "complete"

    # Terminal failures
    STATE_INVALID = "state_invalid"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


class FlowOutcome(str, enum.Enum):
    """How a completed flow resolved the local user."""

    USER_MATCHED = "user_matched"
    USER_CREATED = "user_created"
    ACCOUNT_LINKED = "account_linked"


class ProviderErrorKind(str, enum.Enum):
    """Classification of a failed provider call."""

    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    INVALID_GRANT = "invalid_grant"


class StateErrorKind(str, enum.Enum):
    """Why an OAuth state token failed validation."""

    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"


class SecurityEventType(str, enum.Enum):
    """Security-relevant events recorded by the vault."""

    STATE_VALIDATION_FAILURE = "state_validation_failure"
    CSRF_ATTACK_DETECTED = "csrf_attack_detected"
    INVALID_TOKEN_USAGE = "invalid_token_usage"
    IDENTITY_CONFLICT = "identity_conflict"
    DECRYPTION_FAILURE = "decryption_failure"
    SUSPICIOUS_CLIENT_BEHAVIOR = "suspicious_client_behavior"


class SecuritySeverity(str, enum.Enum):
    """Severity attached to a security event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CircuitState(str, enum.Enum):
    """Circuit breaker state for one provider."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ProviderHealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
