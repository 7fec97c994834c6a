"""
Client configuration for a provider registration.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class ProviderClientConfig(BaseModel):
    """
    Credentials and options for one provider app registration.

    Apple and Apple Music sign JWTs with ``private_key`` (PEM, EC P-256)
    identified by ``team_id`` and ``key_id`` instead of using a client secret.
    """

    client_id: str = Field(..., min_length=1, description="OAuth client id or services id")
    client_secret: Optional[SecretStr] = Field(None, description="OAuth client secret")
    team_id: Optional[str] = Field(None, description="Apple developer team id")
    key_id: Optional[str] = Field(None, description="Apple signing key id")
    private_key: Optional[SecretStr] = Field(None, description="PEM private key for JWT signing")
    scopes: Optional[List[str]] = Field(None, description="Override the adapter's default scopes")
    authorize_url: Optional[str] = Field(
        None, description="Override the authorization endpoint (required for Apple Music)"
    )

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v):
        if isinstance(v, str):
            return [s for s in v.replace(",", " ").split() if s]
        return v

    def secret(self) -> Optional[str]:
        return self.client_secret.get_secret_value() if self.client_secret else None

    def signing_key(self) -> Optional[str]:
        return self.private_key.get_secret_value() if self.private_key else None
