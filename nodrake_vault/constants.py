"""
Names shared across the vault: environment variables, log levels and the
log keys that must never carry a value to a sink.
"""

from enum import Enum


class OperationStatus(str, Enum):
    """Outcome recorded when an operation context closes."""

    SUCCESS = "success"
    ERROR = "error"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Environment variables read by ``nodrake_vault.config`` and the secret source."""

    APP_ENV = "APP_ENV"
    DEBUG = "DEBUG"
    LOG_LEVEL = "LOG_LEVEL"

    DATABASE_URL = "DATABASE_URL"
    DB_POOL_SIZE = "DB_POOL_SIZE"
    DB_MAX_OVERFLOW = "DB_MAX_OVERFLOW"
    DB_ECHO = "DB_ECHO"

    VAULT_ENCRYPTION_KEYS = "VAULT_ENCRYPTION_KEYS"
    VAULT_REFRESH_MARGIN_SECONDS = "VAULT_REFRESH_MARGIN_SECONDS"
    VAULT_STATE_TTL_SECONDS = "VAULT_STATE_TTL_SECONDS"
    PROVIDER_TIMEOUT_SECONDS = "PROVIDER_TIMEOUT_SECONDS"
    CIRCUIT_FAILURE_THRESHOLD = "CIRCUIT_FAILURE_THRESHOLD"
    CIRCUIT_RECOVERY_SECONDS = "CIRCUIT_RECOVERY_SECONDS"


# Prefix for per-provider client settings, e.g. OAUTH_GOOGLE_CLIENT_ID
PROVIDER_ENV_PREFIX = "OAUTH_"

DEFAULT_DATABASE_URL = "sqlite:///./nodrake_vault.db"

# Extra keys whose values must never reach a log sink
SENSITIVE_LOG_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "code",
        "code_verifier",
        "client_secret",
        "private_key",
        "state_token",
        "plaintext",
        "ciphertext",
        "key",
        "password",
    }
)
