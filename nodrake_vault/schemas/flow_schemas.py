"""
Pydantic schemas for OAuth flows: purpose, state bookkeeping and results.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..enums import FlowOutcome, FlowPurposeKind, Provider


class FlowPurpose(BaseModel):
    """Login as whoever the identity resolves to, or link to an existing user."""

    kind: FlowPurposeKind
    user_id: Optional[str] = Field(None, min_length=1, max_length=64)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def check_user(self) -> "FlowPurpose":
        if self.kind == FlowPurposeKind.LINK and not self.user_id:
            raise ValueError("link flows require the initiating user_id")
        if self.kind == FlowPurposeKind.LOGIN and self.user_id:
            raise ValueError("login flows must not carry a user_id")
        return self

    @classmethod
    def login(cls) -> "FlowPurpose":
        return cls(kind=FlowPurposeKind.LOGIN)

    @classmethod
    def link(cls, user_id: str) -> "FlowPurpose":
        return cls(kind=FlowPurposeKind.LINK, user_id=user_id)


class StoredFlowState(BaseModel):
    """A pending flow as kept by a flow state store."""

    state_hash: str = Field(..., min_length=64, max_length=64)
    provider: Provider
    redirect_uri: str
    purpose: FlowPurpose
    code_verifier: str = Field(..., repr=False)
    issued_at: datetime
    expires_at: datetime


class IssuedFlowState(BaseModel):
    """Returned by the state manager when a flow starts."""

    state_token: str = Field(..., repr=False)
    code_challenge: str
    code_verifier: str = Field(..., repr=False)
    expires_at: datetime


class ConsumedFlowState(BaseModel):
    """What a successfully validated callback recovers from its state."""

    provider: Provider
    redirect_uri: str
    purpose: FlowPurpose
    code_verifier: str = Field(..., repr=False)
    issued_at: datetime


class FlowResult(BaseModel):
    """Outcome of a completed flow."""

    user_id: str
    provider: Provider
    outcome: FlowOutcome
    provider_subject_id: str
    correlation_id: Optional[str] = None

    @property
    def created_user(self) -> bool:
        return self.outcome == FlowOutcome.USER_CREATED
