"""Pydantic schemas for tokens, credentials, flows and security events."""

from .credential_schemas import (
    CredentialMetadata,
    CredentialRecord,
    ProviderHealth,
    RefreshSweepResult,
    TokenHealth,
    VaultStatistics,
)
from .flow_schemas import (
    ConsumedFlowState,
    FlowPurpose,
    FlowResult,
    IssuedFlowState,
    StoredFlowState,
)
from .provider_schemas import ProviderClientConfig
from .security_schemas import SecurityEvent, SecurityStats
from .token_schemas import ExternalIdentity, TokenSet

__all__ = [
    "ConsumedFlowState",
    "CredentialMetadata",
    "CredentialRecord",
    "ExternalIdentity",
    "FlowPurpose",
    "FlowResult",
    "IssuedFlowState",
    "ProviderClientConfig",
    "ProviderHealth",
    "RefreshSweepResult",
    "SecurityEvent",
    "SecurityStats",
    "StoredFlowState",
    "TokenHealth",
    "TokenSet",
    "VaultStatistics",
]
