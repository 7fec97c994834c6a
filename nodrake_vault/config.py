"""
Vault settings.

Every section is a Pydantic model whose defaults come from the environment
at construction time, so tests can build an ``AppConfig`` directly and
``get_config()`` picks up whatever the process was started with.
Per-provider client credentials are not settings; they come from a
``SecretSource`` (see ``nodrake_vault.secret_source``).
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_DATABASE_URL, EnvironmentVariable, LogLevel


def _env(name: EnvironmentVariable, default: str) -> str:
    return os.getenv(name.value, default)


def _env_int(name: EnvironmentVariable, default: int) -> int:
    return int(_env(name, str(default)))


def _env_flag(name: EnvironmentVariable) -> bool:
    return _env(name, "false").strip().lower() in ("1", "true", "yes")


class DatabaseSettings(BaseModel):
    """Where the credential store lives and how big its pool is."""

    connection_string: str = Field(
        default_factory=lambda: _env(EnvironmentVariable.DATABASE_URL, DEFAULT_DATABASE_URL)
    )
    pool_size: int = Field(default_factory=lambda: _env_int(EnvironmentVariable.DB_POOL_SIZE, 5))
    max_overflow: int = Field(
        default_factory=lambda: _env_int(EnvironmentVariable.DB_MAX_OVERFLOW, 10)
    )
    pool_timeout: int = 30
    echo: bool = Field(default_factory=lambda: _env_flag(EnvironmentVariable.DB_ECHO))


class LoggingConfig(BaseModel):
    level: str = Field(default_factory=lambda: _env(EnvironmentVariable.LOG_LEVEL, "INFO"))
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    redact_secrets: bool = Field(
        default=True, description="Mask token and key material found in log extras"
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LogLevel.__members__:
            raise ValueError(f"Invalid log level: {v}. Must be one of {list(LogLevel.__members__)}")
        return level


class VaultConfig(BaseModel):
    """Token lifecycle timing."""

    refresh_margin_seconds: int = Field(
        default_factory=lambda: _env_int(EnvironmentVariable.VAULT_REFRESH_MARGIN_SECONDS, 300),
        ge=0,
        description="Refresh access tokens expiring within this many seconds",
    )
    state_ttl_seconds: int = Field(
        default_factory=lambda: _env_int(EnvironmentVariable.VAULT_STATE_TTL_SECONDS, 600),
        gt=0,
        description="Lifetime of an OAuth state token",
    )
    state_token_bytes: int = Field(
        default=32, ge=16, description="Random bytes in a state token (16 bytes = 128 bits)"
    )
    provider_timeout_seconds: float = Field(
        default_factory=lambda: float(_env(EnvironmentVariable.PROVIDER_TIMEOUT_SECONDS, "10")),
        gt=0,
        description="Default timeout for a single provider HTTP call",
    )
    refresh_sweep_window_seconds: int = Field(
        default=900, gt=0, description="Window used by the proactive refresh sweep"
    )
    maintenance_batch_size: int = Field(
        default=100, gt=0, description="Records handled per maintenance batch"
    )


class RetryConfig(BaseModel):
    """Backoff for idempotent provider reads."""

    max_attempts: int = Field(default=3, ge=1, description="Attempts including the first call")
    backoff_base_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)


class CircuitBreakerConfig(BaseModel):
    """When a provider is considered down and how long calls to it are skipped."""

    enabled: bool = True
    failure_threshold: int = Field(
        default_factory=lambda: _env_int(EnvironmentVariable.CIRCUIT_FAILURE_THRESHOLD, 5),
        ge=1,
        description="Consecutive transient failures that open the circuit",
    )
    recovery_timeout_seconds: int = Field(
        default_factory=lambda: _env_int(EnvironmentVariable.CIRCUIT_RECOVERY_SECONDS, 300),
        gt=0,
        description="How long an open circuit rejects calls before a trial call",
    )


class SecurityConfig(BaseModel):
    """How many events of a type within the window trigger an alert."""

    alert_thresholds: Dict[str, int] = Field(
        default_factory=lambda: {
            "state_validation_failure": 5,
            "csrf_attack_detected": 1,
            "invalid_token_usage": 10,
            "identity_conflict": 3,
            "decryption_failure": 1,
            "suspicious_client_behavior": 3,
        }
    )
    alert_window_seconds: int = Field(default=3600, gt=0)
    max_events: int = Field(default=10000, gt=0, description="Events kept in memory")
    event_retention_hours: int = Field(default=24, gt=0)


class AppConfig(BaseModel):
    environment: str = Field(default_factory=lambda: _env(EnvironmentVariable.APP_ENV, "development"))
    debug: bool = Field(default_factory=lambda: _env_flag(EnvironmentVariable.DEBUG))

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """The process-wide settings, read from the environment on first use."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Forget the current settings; the next ``get_config()`` re-reads the environment."""
    global _config
    _config = None
