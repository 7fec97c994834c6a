"""
Credential model for linked provider accounts.

Just the data structure - no business logic or class methods.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, LargeBinary, String, Text

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class OAuthCredential(Base, UUIDMixin, TimestampMixin):
    """One linked provider account per (user, provider), tokens stored encrypted."""

    __tablename__ = "oauth_credentials"

    # Ownership
    user_id = Column(String(64), nullable=False)
    provider = Column(String(32), nullable=False)
    provider_subject_id = Column(String(255), nullable=False)

    # Profile metadata from the provider
    email = Column(String(320), nullable=True)
    email_verified = Column(Boolean, nullable=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    scopes = Column(Text, nullable=True)

    # Encrypted token material, both blobs under the same key version
    access_token_ciphertext = Column(LargeBinary, nullable=False)
    refresh_token_ciphertext = Column(LargeBinary, nullable=True)
    encryption_key_version = Column(Integer, nullable=False)

    # NULL means long-lived; validate by use
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_oauth_credential_user_provider", "user_id", "provider", unique=True),
        Index(
            "ix_oauth_credential_provider_subject", "provider", "provider_subject_id", unique=True
        ),
        Index("ix_oauth_credential_expires_at", "access_token_expires_at"),
        Index("ix_oauth_credential_key_version", "encryption_key_version"),
    )
