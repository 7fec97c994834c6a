"""
Pydantic schemas for stored provider credentials.

CredentialRecord is the store's unit of work and carries ciphertext.
CredentialMetadata is what leaves the vault: no token material of any kind.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..db.db_base import ensure_utc
from ..enums import CircuitState, Provider, ProviderHealthStatus


class CredentialRecord(BaseModel):
    """Encrypted token record for one (user, provider) link."""

    user_id: str = Field(..., min_length=1, max_length=64)
    provider: Provider
    provider_subject_id: str = Field(..., min_length=1, max_length=255)

    access_token_ciphertext: bytes = Field(..., repr=False)
    refresh_token_ciphertext: Optional[bytes] = Field(None, repr=False)
    encryption_key_version: int = Field(..., ge=1)
    access_token_expires_at: Optional[datetime] = None

    email: Optional[str] = None
    email_verified: Optional[bool] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    scopes: Optional[str] = None

    last_refreshed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator(
        "access_token_expires_at", "last_refreshed_at", "created_at", "updated_at"
    )
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def has_refresh_token(self) -> bool:
        return self.refresh_token_ciphertext is not None

    def is_expiring(self, now: datetime, margin_seconds: int) -> bool:
        """True when the access token has expired or will within ``margin_seconds``."""
        if self.access_token_expires_at is None:
            return False
        return self.access_token_expires_at <= now + timedelta(seconds=margin_seconds)


class CredentialMetadata(BaseModel):
    """Non-secret view of a linked provider account."""

    user_id: str
    provider: Provider
    provider_subject_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    scopes: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    has_refresh_token: bool = False
    encryption_key_version: int
    last_refreshed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "CredentialMetadata":
        return cls(
            user_id=record.user_id,
            provider=record.provider,
            provider_subject_id=record.provider_subject_id,
            email=record.email,
            display_name=record.display_name,
            avatar_url=record.avatar_url,
            scopes=record.scopes,
            access_token_expires_at=record.access_token_expires_at,
            has_refresh_token=record.has_refresh_token,
            encryption_key_version=record.encryption_key_version,
            last_refreshed_at=record.last_refreshed_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class RefreshSweepResult(BaseModel):
    """Counts from one proactive refresh sweep."""

    examined: int = 0
    refreshed: int = 0
    reauth_required: int = 0
    failed: int = 0
    skipped: int = 0


class VaultStatistics(BaseModel):
    """Point-in-time counts over the credential store."""

    total_credentials: int
    by_provider: Dict[str, int] = Field(default_factory=dict)
    by_key_version: Dict[int, int] = Field(default_factory=dict)
    expiring_soon: int = 0
    current_key_version: int
    generated_at: datetime


class TokenHealth(BaseModel):
    """Result of a local, network-free check of one stored credential."""

    user_id: str
    provider: Provider
    is_valid: bool = Field(description="Access token decrypts and has not expired")
    needs_refresh: bool = Field(description="Access token is inside the refresh margin")
    can_refresh: bool
    expires_at: Optional[datetime] = None
    error: Optional[str] = Field(None, description="Error code when the check found a problem")
    checked_at: datetime


class ProviderHealth(BaseModel):
    provider: Provider
    status: ProviderHealthStatus
    circuit_state: CircuitState
    consecutive_failures: int = 0
    retry_at: Optional[datetime] = None
