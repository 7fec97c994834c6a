"""
Exception hierarchy for the token vault.

Every error carries an error code, an HTTP-style status, an error id and the
current correlation id, and logs itself when raised. Errors surfaced to callers
never carry token material, key material or raw provider response bodies.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .enums import ProviderErrorKind, StateErrorKind

_thread_local = threading.local()

# Attributes a LogRecord already defines; context keys with these names stay nested
_LOG_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class ErrorCode(str, Enum):
    """Stable codes callers can branch on; the numeric range names the layer."""

    # Infrastructure (1xxx)
    INTERNAL_ERROR = "1000"
    DATABASE_ERROR = "1001"
    CONNECTION_ERROR = "1002"
    CONFIGURATION_ERROR = "1003"
    TIMEOUT_ERROR = "1004"

    # Input (2xxx)
    VALIDATION_FAILED = "2000"
    INVALID_FORMAT = "2001"
    MISSING_REQUIRED = "2002"
    CONSTRAINT_VIOLATION = "2004"

    # Stored resources (3xxx)
    NOT_FOUND = "3000"
    CONFLICT = "3002"

    # Token lifecycle (4xxx)
    STATE_INVALID = "4100"
    IDENTITY_CONFLICT = "4101"
    NOT_LINKED = "4102"
    NO_REFRESH_TOKEN = "4103"
    REAUTH_REQUIRED = "4104"
    DECRYPTION_FAILED = "4105"

    # Providers (5xxx)
    EXTERNAL_API_ERROR = "5002"
    PROVIDER_REJECTED = "5100"
    PROVIDER_UNAVAILABLE = "5101"


class BaseError(Exception):
    """
    Root of the vault's error taxonomy.

    Construction logs the error once, at ERROR for 5xx statuses, WARNING for
    4xx and INFO otherwise. The cause is kept for chaining but only its type
    and message are ever exposed.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.cause = cause
        self.error_id = str(uuid.uuid4())
        self.occurred_at = datetime.now(timezone.utc)

        self.context: Dict[str, Any] = dict(context)
        self.context["error_id"] = self.error_id
        correlation_id = get_correlation_id()
        if correlation_id:
            self.context["correlation_id"] = correlation_id

        self._log()

    @property
    def correlation_id(self) -> Optional[str]:
        return self.context.get("correlation_id")

    @property
    def log_level(self) -> int:
        if self.status_code >= 500:
            return logging.ERROR
        if self.status_code >= 400:
            return logging.WARNING
        return logging.INFO

    def _log(self) -> None:
        # Imported here: the utils package imports this module
        from .utils.logger import get_logger

        extra: Dict[str, Any] = {
            "error_code": self.error_code.value,
            "status_code": self.status_code,
        }
        nested: Dict[str, Any] = {}
        for key, value in self.context.items():
            if key in _LOG_RECORD_ATTRIBUTES:
                nested[key] = value
            else:
                extra[key] = value
        if nested:
            extra["error_context"] = nested
        if self.cause is not None:
            extra["cause_type"] = type(self.cause).__name__

        method = logging.getLevelName(self.log_level).lower()
        getattr(get_logger(), method)(f"{type(self).__name__}: {self.message}", extra=extra)

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        """
        Serializable form for API responses.

        Args:
            include_cause: Add the cause's type and message
        """
        body: Dict[str, Any] = {
            "id": self.error_id,
            "code": self.error_code.value,
            "message": self.message,
            "timestamp": self.occurred_at.isoformat(),
            "context": {
                k: v for k, v in self.context.items() if k not in ("error_id", "correlation_id")
            },
        }
        if self.correlation_id:
            body["correlation_id"] = self.correlation_id
        if include_cause and self.cause is not None:
            body["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return {"error": body}

    def add_context(self, **kwargs: Any) -> "BaseError":
        self.context.update(kwargs)
        return self

    @property
    def error_chain(self) -> List[BaseException]:
        """This error followed by its causes, outermost first."""
        chain: List[BaseException] = [self]
        current = self.cause or self.__cause__
        while current is not None and current not in chain:
            chain.append(current)
            current = getattr(current, "cause", None) or current.__cause__
        return chain


class RepositoryError(BaseError):
    """Credential or flow state store failure."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = 500,
        cause: Optional[Exception] = None,
        **context,
    ):
        super().__init__(message, error_code, status_code, cause, **context)


class ServiceError(BaseError):
    """Failure inside a vault service that is not the caller's fault."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        if operation:
            context["operation"] = operation
        super().__init__(message, error_code, 500, cause, **context)


class ValidationError(BaseError):
    """Bad input or configuration."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        cause: Optional[Exception] = None,
        **context,
    ):
        if field:
            context["field"] = field
        super().__init__(message, error_code, 400, cause, **context)


class ExternalServiceError(BaseError):
    """A call to something outside the vault failed."""

    def __init__(
        self,
        message: str,
        service_name: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_API_ERROR,
        status_code: int = 502,
        cause: Optional[Exception] = None,
        **context,
    ):
        context["service_name"] = service_name
        super().__init__(message, error_code, status_code, cause, **context)


def not_found(
    resource_type: str, cause: Optional[Exception] = None, **identifiers
) -> RepositoryError:
    """
    Build a 404 RepositoryError.

    The message lists the identifiers, e.g. ``ProviderAdapter not found: provider=tidal``.
    """
    described = ", ".join(f"{k}={v}" for k, v in identifiers.items())
    return RepositoryError(
        f"{resource_type} not found: {described}" if described else f"{resource_type} not found",
        error_code=ErrorCode.NOT_FOUND,
        status_code=404,
        cause=cause,
        resource_type=resource_type,
        **identifiers,
    )


def validation_failed(
    field: str, reason: str, cause: Optional[Exception] = None, **context
) -> ValidationError:
    return ValidationError(
        f"Validation failed for {field}: {reason}",
        field=field,
        error_code=ErrorCode.VALIDATION_FAILED,
        cause=cause,
        reason=reason,
        **context,
    )


# ==================== COMPONENT-LEVEL EXCEPTIONS ====================


class ProviderError(ExternalServiceError):
    """
    A provider call failed.

    ``kind`` tells the orchestrator how to react: UNAVAILABLE is transient,
    INVALID_GRANT means the refresh token is dead, REJECTED is everything else
    the provider refused. ``reason`` is a short classifier such as the OAuth
    ``error`` field or ``http_401``, never the response body.
    """

    def __init__(
        self,
        provider: str,
        kind: ProviderErrorKind,
        reason: str,
        http_status: Optional[int] = None,
        cause: Optional[Exception] = None,
        **context,
    ):
        self.provider = provider
        self.kind = kind
        self.reason = reason
        self.http_status = http_status
        error_code = (
            ErrorCode.PROVIDER_UNAVAILABLE
            if kind == ProviderErrorKind.UNAVAILABLE
            else ErrorCode.PROVIDER_REJECTED
        )
        super().__init__(
            f"Provider {provider} call failed: {kind.value} ({reason})",
            service_name=provider,
            error_code=error_code,
            status_code=503 if kind == ProviderErrorKind.UNAVAILABLE else 502,
            cause=cause,
            kind=kind.value,
            reason=reason,
            http_status=http_status,
            **context,
        )

    @property
    def retryable(self) -> bool:
        return self.kind == ProviderErrorKind.UNAVAILABLE


class StateError(BaseError):
    """An OAuth state token was unknown, expired, already used, or bound to another flow."""

    def __init__(self, kind: StateErrorKind, **context):
        self.kind = kind
        super().__init__(
            f"OAuth state rejected: {kind.value}",
            error_code=ErrorCode.STATE_INVALID,
            status_code=400,
            kind=kind.value,
            **context,
        )


class StoreConflictError(RepositoryError):
    """A credential write lost a uniqueness race or hit an identity owned by another user."""

    retryable = True

    def __init__(self, message: str = "Credential store conflict", **kwargs):
        super().__init__(message, error_code=ErrorCode.CONFLICT, status_code=409, **kwargs)


# ==================== VAULT EXCEPTIONS ====================


class VaultError(BaseError):
    """Base for errors surfaced by the token lifecycle orchestrator."""

    retryable = False


class StateInvalidError(VaultError):
    """The callback's state token did not validate."""

    def __init__(self, message: str = "OAuth state is invalid or expired", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.STATE_INVALID, status_code=400, **kwargs
        )


class ProviderRejectedError(VaultError):
    """The provider refused the request."""

    def __init__(self, message: str = "Provider rejected the request", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.PROVIDER_REJECTED, status_code=400, **kwargs
        )


class ProviderUnavailableError(VaultError):
    """The provider could not be reached or failed transiently."""

    retryable = True

    def __init__(self, message: str = "Provider is temporarily unavailable", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.PROVIDER_UNAVAILABLE, status_code=503, **kwargs
        )


class IdentityConflictError(VaultError):
    """The external identity is already linked to a different user."""

    def __init__(self, message: str = "External account is linked to another user", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.IDENTITY_CONFLICT, status_code=409, **kwargs
        )


class NotLinkedError(VaultError):
    """The user has no credential for the provider."""

    def __init__(self, message: str = "Provider is not linked", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.NOT_LINKED, status_code=404, **kwargs
        )


class NoRefreshTokenError(VaultError):
    """The access token expired and the provider issued no refresh token."""

    def __init__(self, message: str = "Access token expired and cannot be refreshed", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.NO_REFRESH_TOKEN, status_code=401, **kwargs
        )


class ReauthRequiredError(VaultError):
    """The provider revoked the grant; the user must authorize again."""

    def __init__(self, message: str = "Provider authorization must be renewed", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.REAUTH_REQUIRED, status_code=401, **kwargs
        )


class DecryptionError(VaultError):
    """Stored ciphertext could not be decrypted."""

    def __init__(self, message: str = "Stored credential could not be decrypted", **kwargs):
        super().__init__(
            message=message, error_code=ErrorCode.DECRYPTION_FAILED, status_code=500, **kwargs
        )


# Correlation ID management
def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current thread."""
    _thread_local.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get the current thread's correlation ID."""
    return getattr(_thread_local, "correlation_id", None)


def clear_correlation_id() -> None:
    """Clear the current thread's correlation ID."""
    if hasattr(_thread_local, "correlation_id"):
        delattr(_thread_local, "correlation_id")
