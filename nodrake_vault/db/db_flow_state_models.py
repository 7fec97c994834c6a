"""
Pending OAuth flow state.

Rows are keyed by the SHA-256 digest of the state token, so a database
read never yields a usable state value.
"""

from sqlalchemy import Column, DateTime, Index, String, Text

from .db_base import utc_now
from .db_config import Base


class OAuthFlowState(Base):
    """A flow between authorization redirect and callback. Deleted when consumed."""

    __tablename__ = "oauth_flow_states"

    state_hash = Column(String(64), primary_key=True)
    provider = Column(String(32), nullable=False)
    redirect_uri = Column(Text, nullable=False)

    # login, or link with the initiating user
    purpose = Column(String(16), nullable=False)
    purpose_user_id = Column(String(64), nullable=True)

    code_verifier = Column(String(128), nullable=False)

    issued_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_oauth_flow_state_expires_at", "expires_at"),)
