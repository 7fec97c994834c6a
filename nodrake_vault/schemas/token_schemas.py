"""
Pydantic schemas for what providers hand back: token sets and identities.
"""

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenSet(BaseModel):
    """Tokens returned by a code exchange or a refresh."""

    access_token: str = Field(..., min_length=1, repr=False, description="OAuth access token")
    refresh_token: Optional[str] = Field(None, repr=False, description="OAuth refresh token")
    expires_in_seconds: Optional[int] = Field(
        None, ge=0, description="Access token lifetime; None means long-lived"
    )
    id_token: Optional[str] = Field(None, repr=False, description="OpenID Connect id_token")
    scope: Optional[str] = Field(None, description="Granted scopes, space separated")
    token_type: str = Field(default="Bearer", description="Token type")

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    @field_validator("refresh_token", "id_token", "scope")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Providers sometimes send empty strings for absent values."""
        return v or None

    def expires_at(self, issued_at: datetime) -> Optional[datetime]:
        if self.expires_in_seconds is None:
            return None
        return issued_at + timedelta(seconds=self.expires_in_seconds)


class ExternalIdentity(BaseModel):
    """The provider's view of the user behind an access token."""

    subject_id: str = Field(..., min_length=1, description="Provider's stable user identifier")
    email: Optional[str] = Field(None, description="Email address, if shared")
    email_verified: Optional[bool] = Field(None, description="Whether the provider verified it")
    display_name: Optional[str] = Field(None, description="Display name")
    avatar_url: Optional[str] = Field(None, description="Profile picture URL")

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    @field_validator("subject_id", mode="before")
    @classmethod
    def coerce_subject(cls, v):
        # GitHub and Spotify ids can be numeric
        return str(v) if isinstance(v, int) else v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else None

    @property
    def has_verified_email(self) -> bool:
        return bool(self.email) and self.email_verified is True
